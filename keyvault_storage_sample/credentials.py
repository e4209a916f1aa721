"""
Credential providers for the sample.

The management credential is a service principal used for control-plane calls.
Key Vault only lets a signed-in user add a storage account to a vault or
regenerate its keys, so the managed-storage variant also uses a user credential
obtained through device code login.
"""
import base64
import json
import logging

from azure.identity import ClientSecretCredential, DeviceCodeCredential

logger = logging.getLogger(__name__)

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
KEY_VAULT_SCOPE = "https://vault.azure.net/.default"


def get_management_credential(config):
    """Get a service principal credential for the configured client."""
    return ClientSecretCredential(
        tenant_id=config.tenant_id,
        client_id=config.client_id,
        client_secret=config.client_secret,
    )


def _print_device_code(verification_uri, user_code, expires_on):
    print()
    print(f"To sign in, open {verification_uri} and enter the code {user_code}")
    print()


def get_user_credential(config):
    """Get a credential that signs the user in with a device code prompt.

    The credential caches its tokens, so the user is prompted once per run.
    """
    return DeviceCodeCredential(
        tenant_id=config.tenant_id,
        prompt_callback=_print_device_code,
    )


def get_token(credential, scope=MANAGEMENT_SCOPE):
    """Get an access token for a single scope."""
    return credential.get_token(scope)


def decode_token_claims(token: str) -> dict:
    """Decode the claims of a JWT access token without verifying it."""
    parts = token.split(".")
    if len(parts) < 2:
        raise ValueError("Access token is not a JWT")

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    return json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))


def get_principal_object_id(credential, scope=MANAGEMENT_SCOPE) -> str:
    """Return the object id of the principal a credential signs in as."""
    access_token = get_token(credential, scope)
    claims = decode_token_claims(access_token.token)

    object_id = claims.get("oid")
    if not object_id:
        raise ValueError("Access token does not carry an 'oid' claim")

    logger.debug("Resolved signed-in principal %s", object_id)
    return object_id
