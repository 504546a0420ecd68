"""
RPC payload and response models. Wire keys are camelCase.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool, StrictStr
from pydantic.alias_generators import to_camel


class RpcModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_payload(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class LoginRequest(RpcModel):
    id_token: StrictStr = Field(validation_alias=AliasChoices("idToken", "id_token"), min_length=1)
    create: StrictBool = True
    username: Optional[StrictStr] = None


class LinkRequest(RpcModel):
    id_token: StrictStr = Field(validation_alias=AliasChoices("idToken", "id_token"), min_length=1)


class WalletView(RpcModel):
    address: str
    chain: str


class LoginResponse(RpcModel):
    session_token: str
    wallet: Optional[WalletView] = None


class LinkResponse(RpcModel):
    success: bool
    wallet: Optional[WalletView] = None


class SignAndSendResponse(RpcModel):
    tx_hash: str
