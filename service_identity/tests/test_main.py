"""
Tests for the identity bridge host service.
"""

import json

import pytest
from fastapi.testclient import TestClient

from service_identity.app.main import IdentityService, create_app
from shared.config import get_config
from shared.errors import SignerNotConfiguredError
from shared.test_helpers import JWKSEndpoint, MockIdentityProvider, mock_config_values


@pytest.fixture(scope="module")
def idp():
    return MockIdentityProvider()


@pytest.fixture
def endpoint(idp):
    return JWKSEndpoint(idp)


@pytest.fixture
def app(endpoint):
    return create_app(get_config(**mock_config_values()), jwks_http_client=endpoint.client())


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


def call_rpc(client, rpc_id, payload=None, session=None):
    headers = {"Authorization": f"Bearer {session}"} if session else {}
    body = json.dumps(payload) if payload is not None else ""
    return client.post(f"/v2/rpc/{rpc_id}", content=body, headers=headers)


class TestIdentityService:
    """Test cases for IdentityService."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "identity"

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "identity"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"jwks": "empty", "wallet": "derived"}

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

        assert client.get("/").headers["X-Request-ID"]

    def test_login_and_get_wallet(self, client, idp):
        response = call_rpc(client, "rpc_cognito_login", {"idToken": idp.id_token("user-42")})

        assert response.status_code == 200
        login = response.json()
        assert login["sessionToken"]
        assert login["wallet"]["chain"] == "evm"

        response = call_rpc(client, "rpc_get_wallet", {}, session=login["sessionToken"])
        assert response.status_code == 200
        assert response.json() == login["wallet"]

    def test_sign_and_send(self, client, idp):
        login = call_rpc(client, "rpc_cognito_login", {"idToken": idp.id_token("user-42")}).json()

        response = call_rpc(
            client,
            "rpc_sign_and_send",
            {"to": "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed", "valueWei": "0x1"},
            session=login["sessionToken"],
        )

        assert response.status_code == 200
        assert response.json()["txHash"].startswith("0x")

    def test_error_envelope(self, client, idp):
        response = call_rpc(client, "rpc_cognito_login", {"idToken": idp.id_token(expires_in=-10)})

        assert response.status_code == 401
        assert response.json() == {"code": "TOKEN_EXPIRED", "message": "Token has expired", "details": {}}

    def test_invalid_payload(self, client):
        response = client.post("/v2/rpc/rpc_cognito_login", content="{not json")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PAYLOAD"

    def test_payload_not_utf8(self, client):
        response = client.post("/v2/rpc/rpc_cognito_login", content=b"\xff\xfe{")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PAYLOAD"

    def test_session_required(self, client):
        response = call_rpc(client, "rpc_get_wallet", {})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_unknown_session(self, client):
        response = call_rpc(client, "rpc_get_wallet", {}, session="forged")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_unknown_rpc(self, client):
        response = call_rpc(client, "rpc_delete_everything", {})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_key_fetch_failure(self, client, idp, endpoint):
        endpoint.status_code = 503

        response = call_rpc(client, "rpc_cognito_login", {"idToken": idp.id_token()})

        assert response.status_code == 503
        assert response.json()["code"] == "KEY_FETCH_FAILURE"

    def test_metrics_endpoint(self, client, idp):
        call_rpc(client, "rpc_cognito_login", {"idToken": idp.id_token()})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'token_verifications_total{status="success"} 1.0' in response.text
        assert "wallets_provisioned_total" in response.text

    def test_sign_and_send_absent_without_wallets(self, endpoint):
        app = create_app(get_config(**mock_config_values(wallet_enabled=False)), jwks_http_client=endpoint.client())

        with TestClient(app) as client:
            response = call_rpc(client, "rpc_sign_and_send", {})
            assert response.status_code == 404
            assert client.get("/health").json()["dependencies"]["wallet"] == "disabled"

    def test_derived_signer_refused_in_production(self, endpoint):
        with pytest.raises(SignerNotConfiguredError):
            IdentityService(get_config(**mock_config_values(env="production")), jwks_http_client=endpoint.client())
