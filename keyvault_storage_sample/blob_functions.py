"""
Blob data-plane functions used to check that SAS tokens issued by the vault work,
and the SAS templates the vault issues those tokens from.
"""
import logging
from datetime import datetime, timedelta, timezone

from azure.core.exceptions import ResourceExistsError
from azure.storage.blob import (
    AccountSasPermissions,
    BlobServiceClient,
    ResourceTypes,
    generate_account_sas,
    generate_container_sas,
)

logger = logging.getLogger(__name__)

# SAS templates are signed with a placeholder; the vault re-signs them with the real key
TEMPLATE_SIGNING_KEY = "00000000"


def blob_account_url(account_name):
    return f"https://{account_name}.blob.core.windows.net"


def _template_expiry():
    # Ignored by the vault; the definition's validity period sets the real expiry
    return datetime.now(timezone.utc) + timedelta(days=1)


def build_account_sas_template(account_name, policy):
    """Build the template of an account SAS definition from a SasPolicy."""
    return generate_account_sas(
        account_name,
        TEMPLATE_SIGNING_KEY,
        resource_types=ResourceTypes.from_string(policy.resource_types),
        permission=AccountSasPermissions.from_string(policy.permissions),
        expiry=_template_expiry(),
        services=policy.services,
    )


def build_container_sas_template(account_name, container_name, permission="racwdl"):
    """Build the template URI of a service SAS definition for a blob container."""
    token = generate_container_sas(
        account_name,
        container_name,
        account_key=TEMPLATE_SIGNING_KEY,
        permission=permission,
        expiry=_template_expiry(),
    )
    return f"{blob_account_url(account_name)}/{container_name}?{token}"


class BlobDataService:
    """Container and blob operations authorized by a SAS token."""

    def __init__(self, client: BlobServiceClient):
        self.client = client

    @classmethod
    def from_sas_token(cls, account_name, sas_token):
        return cls(BlobServiceClient(account_url=blob_account_url(account_name), credential=sas_token))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.client.close()

    def create_container_if_absent(self, container_name):
        try:
            self.client.create_container(container_name)
            logger.info("Created container %s", container_name)
        except ResourceExistsError:
            logger.info("Container %s already exists", container_name)

    def upload_blob(self, container_name, blob_name, content):
        container = self.client.get_container_client(container_name)
        container.upload_blob(blob_name, content, overwrite=True)
        logger.info("Uploaded blob %s/%s", container_name, blob_name)

    def set_blob_tags(self, container_name, blob_name, tags):
        blob = self.client.get_blob_client(container_name, blob_name)
        blob.set_blob_tags(tags)

    def list_blobs(self, container_name):
        container = self.client.get_container_client(container_name)
        return [blob.name for blob in container.list_blobs()]

    def delete_blob(self, container_name, blob_name):
        container = self.client.get_container_client(container_name)
        container.delete_blob(blob_name)
        logger.info("Deleted blob %s/%s", container_name, blob_name)
