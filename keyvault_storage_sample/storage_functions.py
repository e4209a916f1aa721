"""
Storage management functions for creating and updating storage accounts,
regenerating their keys, issuing account SAS tokens and binding encryption keys.
These functions serve as the interface between the workflow and Azure Storage.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import (
    AccountSasParameters,
    Encryption,
    EncryptionService,
    EncryptionServices,
    Identity,
    KeyVaultProperties,
    Sku,
    StorageAccountCreateParameters,
    StorageAccountRegenerateKeyParameters,
    StorageAccountUpdateParameters,
)

logger = logging.getLogger(__name__)

KEY_SOURCE_STORAGE = "Microsoft.Storage"
KEY_SOURCE_KEY_VAULT = "Microsoft.Keyvault"


def generate_storage_account_name(prefix="sa"):
    """Return a random storage account name (lowercase letters and digits, at most 24 chars)."""
    return (prefix + uuid.uuid4().hex)[:24]


def _default_expiry():
    return datetime.now(timezone.utc) + timedelta(hours=2)


@dataclass
class SasPolicy:
    """Parameters of an account shared access signature."""

    # b=blob, f=file, q=queue, t=table
    services: str = "bfqt"
    # s=service, c=container, o=object
    resource_types: str = "sco"
    # add, create, delete, list, process, read, update, write
    permissions: str = "acdlpruw"
    expiry: datetime = field(default_factory=_default_expiry)


class StorageService:
    """Control-plane operations on storage accounts."""

    def __init__(self, client: StorageManagementClient):
        self.client = client

    @classmethod
    def from_credential(cls, credential, subscription_id):
        return cls(StorageManagementClient(credential, subscription_id))

    # BEGIN CREATE ACCOUNT FUNCTION
    def create_account(self, group_name, account_name, location, managed_identity=False):
        """Create a storage account and wait for provisioning to finish."""
        parameters = StorageAccountCreateParameters(
            sku=Sku(name="Standard_RAGRS"),
            kind="StorageV2",
            location=location,
            tags={},
        )
        if managed_identity:
            # Needed to unwrap a customer-managed key held in Key Vault
            parameters.identity = Identity(type="SystemAssigned")

        logger.info("Creating storage account %s in %s", account_name, group_name)
        poller = self.client.storage_accounts.begin_create(group_name, account_name, parameters)
        return poller.result()
    # END CREATE ACCOUNT FUNCTION

    def update_account(self, group_name, account_name, parameters: StorageAccountUpdateParameters):
        return self.client.storage_accounts.update(group_name, account_name, parameters)

    # BEGIN REGENERATE KEY FUNCTION
    def regenerate_account_key(self, group_name, account_name, key_name):
        """Regenerate one of the two account access keys."""
        logger.info("Regenerating %s of storage account %s", key_name, account_name)
        self.client.storage_accounts.regenerate_key(
            group_name,
            account_name,
            StorageAccountRegenerateKeyParameters(key_name=key_name),
        )
    # END REGENERATE KEY FUNCTION

    # BEGIN ISSUE ACCOUNT SAS FUNCTION
    def issue_account_sas(self, group_name, account_name, policy: SasPolicy) -> str:
        """Issue an account SAS token signed with the current account key."""
        parameters = AccountSasParameters(
            services=policy.services,
            resource_types=policy.resource_types,
            permissions=policy.permissions,
            shared_access_expiry_time=policy.expiry,
            protocols="https",
        )
        result = self.client.storage_accounts.list_account_sas(group_name, account_name, parameters)
        return result.account_sas_token
    # END ISSUE ACCOUNT SAS FUNCTION

    # BEGIN ENCRYPTION KEY FUNCTIONS
    def bind_encryption_key(self, group_name, account_name, vault_uri, key_name, key_version):
        """Encrypt blob and file data with a key held in Key Vault."""
        logger.info(
            "Binding storage account %s encryption to key %s (version %s)",
            account_name, key_name, key_version
        )
        encryption = Encryption(
            key_source=KEY_SOURCE_KEY_VAULT,
            key_vault_properties=KeyVaultProperties(
                key_name=key_name,
                key_version=key_version,
                key_vault_uri=vault_uri,
            ),
            services=EncryptionServices(
                blob=EncryptionService(enabled=True),
                file=EncryptionService(enabled=True),
            ),
        )
        return self.update_account(
            group_name, account_name, StorageAccountUpdateParameters(encryption=encryption)
        )

    def use_account_managed_keys(self, group_name, account_name):
        """Revert encryption to keys managed by the storage service."""
        logger.info("Reverting storage account %s to Microsoft-managed keys", account_name)
        encryption = Encryption(
            key_source=KEY_SOURCE_STORAGE,
            services=EncryptionServices(
                blob=EncryptionService(enabled=True),
                file=EncryptionService(enabled=True),
            ),
        )
        return self.update_account(
            group_name, account_name, StorageAccountUpdateParameters(encryption=encryption)
        )
    # END ENCRYPTION KEY FUNCTIONS
