"""Tests for token claim decoding and principal resolution."""
import base64
import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from keyvault_storage_sample.credentials import MANAGEMENT_SCOPE, decode_token_claims, get_principal_object_id


def _jwt(claims):
    def encode(part):
        return base64.urlsafe_b64encode(json.dumps(part).encode()).decode().rstrip("=")

    return f"{encode({'alg': 'RS256'})}.{encode(claims)}.signature"


def test_decode_token_claims_handles_missing_padding():
    claims = {"oid": "user-oid", "upn": "someone@example.com"}

    assert decode_token_claims(_jwt(claims)) == claims


def test_decode_rejects_non_jwt():
    with pytest.raises(ValueError):
        decode_token_claims("opaque-token")


def test_principal_object_id_comes_from_token():
    credential = MagicMock()
    credential.get_token.return_value = SimpleNamespace(token=_jwt({"oid": "user-oid"}), expires_on=0)

    assert get_principal_object_id(credential) == "user-oid"
    credential.get_token.assert_called_once_with(MANAGEMENT_SCOPE)


def test_principal_object_id_requires_oid_claim():
    credential = MagicMock()
    credential.get_token.return_value = SimpleNamespace(token=_jwt({"sub": "x"}), expires_on=0)

    with pytest.raises(ValueError):
        get_principal_object_id(credential)
