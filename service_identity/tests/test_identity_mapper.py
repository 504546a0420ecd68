"""
Unit tests for identity mapping.
"""

import pytest

from service_identity.app.identity.mapper import (
    ExternalIdentity,
    extract_user_attributes,
    select_username,
    to_external_identity,
)
from service_identity.app.validation.token_validator import VerifiedIdentity


def make_identity(**overrides) -> VerifiedIdentity:
    values = dict(
        issuer="https://idp.example/pool1",
        audience="client-abc",
        subject="user-42",
        token_use="id",
        expires_at=2_000_000_000,
    )
    values.update(overrides)
    return VerifiedIdentity(**values)


class TestExternalIdentity:
    def test_to_external_identity(self):
        external = to_external_identity(make_identity(), "cognito")

        assert external == ExternalIdentity("cognito", "user-42")
        assert str(external) == "cognito:user-42"

    def test_mapping_is_deterministic(self):
        """Same subject maps to the same external identity, whatever else differs."""
        first = to_external_identity(make_identity(email="a@example.com"), "cognito")
        second = to_external_identity(make_identity(expires_at=2_100_000_000), "cognito")

        assert first == second
        assert hash(first) == hash(second)

    def test_parse_round_trip_keeps_colons_in_subject(self):
        external = ExternalIdentity.parse("cognito:us-east-1:abc")

        assert external.provider == "cognito"
        assert external.subject == "us-east-1:abc"

    @pytest.mark.parametrize("value", ["no-separator", ":subject", "cognito:"])
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            ExternalIdentity.parse(value)

    def test_provider_tag_cannot_contain_separator(self):
        with pytest.raises(ValueError):
            ExternalIdentity("bad:tag", "user-1")


class TestUserAttributes:
    def test_absent_claims_are_omitted(self):
        assert extract_user_attributes(make_identity()) == {}

    def test_present_claims_are_copied(self):
        identity = make_identity(
            email="ada@example.com",
            email_verified=False,
            display_name="Ada",
            picture="https://img.example/ada.png",
            groups=("admins",),
            identity_provider="Google",
        )

        assert extract_user_attributes(identity) == {
            "email": "ada@example.com",
            "email_verified": False,
            "name": "Ada",
            "picture": "https://img.example/ada.png",
            "groups": ["admins"],
            "provider": "Google",
        }

    def test_select_username_precedence(self):
        identity = make_identity(email="ada@example.com", username="ada")

        assert select_username(identity, "chosen") == "chosen"
        assert select_username(identity) == "ada@example.com"
        assert select_username(make_identity(username="ada")) == "ada"
        assert select_username(make_identity()) is None
