"""
Key Vault functions for provisioning the sample vault, granting access to it,
and managing storage account keys and SAS definitions held by the vault.
These functions serve as the interface between the workflow and Azure Key Vault.
"""
import logging
import uuid

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    ResourceExistsError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    HttpLoggingPolicy,
    RequestIdPolicy,
    UserAgentPolicy,
)
from azure.core.rest import HttpRequest
from azure.keyvault.keys import KeyClient
from azure.keyvault.secrets import KeyVaultSecretIdentifier, SecretClient
from azure.mgmt.keyvault import KeyVaultManagementClient
from azure.mgmt.keyvault.models import (
    AccessPolicyEntry,
    Permissions,
    Sku,
    VaultCreateOrUpdateParameters,
    VaultProperties,
)
from azure.mgmt.resource import ResourceManagementClient

logger = logging.getLogger(__name__)

# Managed storage accounts are only exposed by the Key Vault REST API
STORAGE_API_VERSION = "7.4"
KEY_VAULT_SCOPE = "https://vault.azure.net/.default"

ERROR_MAP = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


def full_permissions():
    """Permissions granting everything on keys, secrets, certificates and storage."""
    return Permissions(
        keys=["all"],
        secrets=["all"],
        certificates=["all"],
        storage=["all"],
    )


def key_wrapping_permissions():
    """Permissions a storage account needs to use a customer-managed key."""
    return Permissions(keys=["get", "wrapKey", "unwrapKey"])


def generate_vault_name(prefix="kv-"):
    """Return a random vault name (3-24 chars, starting with a letter)."""
    return (prefix + uuid.uuid4().hex)[:24]


class VaultService:
    """Vault provisioning plus the vault-side storage account key operations."""

    def __init__(
        self,
        management_client: KeyVaultManagementClient,
        resource_client: ResourceManagementClient,
        credential,
        tenant_id,
        location,
        group_name,
        operator_object_id,
        user_credential=None,
    ):
        self.management_client = management_client
        self.resource_client = resource_client
        self.credential = credential
        self.user_credential = user_credential
        self.tenant_id = tenant_id
        self.location = location
        self.group_name = group_name
        self.operator_object_id = operator_object_id
        self._storage_clients = {}

    @classmethod
    def from_config(cls, config, credential, user_credential=None):
        return cls(
            KeyVaultManagementClient(credential, config.subscription_id),
            ResourceManagementClient(credential, config.subscription_id),
            credential,
            tenant_id=config.tenant_id,
            location=config.location,
            group_name=config.group_name,
            operator_object_id=config.client_object_id,
            user_credential=user_credential,
        )

    # BEGIN GET OR CREATE VAULT FUNCTION
    def get_or_create(self, name=None, enable_purge_protection=False):
        """Return the named vault, or create a new one granting the operator full access."""
        if name:
            logger.info("Using existing key vault %s", name)
            return self.management_client.vaults.get(self.group_name, name)

        # Ensure the sample resource group exists
        self.resource_client.resource_groups.create_or_update(
            self.group_name, {"location": self.location}
        )

        name = generate_vault_name()
        properties = VaultProperties(
            tenant_id=self.tenant_id,
            sku=Sku(family="A", name="standard"),
            access_policies=[
                AccessPolicyEntry(
                    tenant_id=self.tenant_id,
                    object_id=self.operator_object_id,
                    permissions=full_permissions(),
                )
            ],
            enabled_for_deployment=False,
        )
        if enable_purge_protection:
            # Customer-managed storage keys require both
            properties.enable_soft_delete = True
            properties.enable_purge_protection = True

        logger.info("Creating sample key vault %s", name)
        poller = self.management_client.vaults.begin_create_or_update(
            self.group_name,
            name,
            VaultCreateOrUpdateParameters(location=self.location, properties=properties, tags={}),
        )
        return poller.result()
    # END GET OR CREATE VAULT FUNCTION

    def update(self, vault):
        """Push the full vault definition, including its access policies."""
        poller = self.management_client.vaults.begin_create_or_update(
            self.group_name,
            vault.name,
            VaultCreateOrUpdateParameters(
                location=vault.location,
                properties=vault.properties,
                tags=vault.tags or {},
            ),
        )
        return poller.result()

    def add_access_policy(self, vault, object_id, permissions):
        """Append an access policy entry to the vault and push it."""
        if vault.properties.access_policies is None:
            vault.properties.access_policies = []

        vault.properties.access_policies.append(
            AccessPolicyEntry(
                tenant_id=self.tenant_id,
                object_id=object_id,
                permissions=permissions,
            )
        )
        logger.info("Granting %s access to vault %s", object_id, vault.name)
        return self.update(vault)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        """Close the cached Key Vault REST pipelines."""
        for client in self._storage_clients.values():
            client.close()
        self._storage_clients.clear()

    def _storage_client(self, vault_uri, as_user=False):
        credential = self.user_credential if as_user and self.user_credential else self.credential
        cache_key = (vault_uri, credential is self.user_credential)

        client = self._storage_clients.get(cache_key)
        if client is None:
            client = PipelineClient(
                base_url=vault_uri,
                policies=[
                    RequestIdPolicy(),
                    HeadersPolicy({"Accept": "application/json"}),
                    UserAgentPolicy(user_agent="keyvault-storage-sample"),
                    BearerTokenCredentialPolicy(credential, KEY_VAULT_SCOPE),
                    HttpLoggingPolicy(),
                ],
            )
            self._storage_clients[cache_key] = client
        return client

    def _send(self, vault_uri, method, path, body=None, as_user=False, **path_args):
        client = self._storage_client(vault_uri, as_user=as_user)
        if path.startswith("https://"):
            # nextLink values already carry the api-version
            request = HttpRequest(method, path)
        else:
            request = HttpRequest(
                method,
                client.format_url(path, **path_args),
                params={"api-version": STORAGE_API_VERSION},
                json=body,
            )

        response = client.send_request(request)
        map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
        response.raise_for_status()

        if not response.content:
            return {}
        return response.json()

    def _list(self, vault_uri, path, **path_args):
        items = []
        page = self._send(vault_uri, "GET", path, **path_args)
        while True:
            items.extend(page.get("value", []))
            next_link = page.get("nextLink")
            if not next_link:
                return items
            page = self._send(vault_uri, "GET", next_link)

    # BEGIN MANAGED STORAGE ACCOUNT FUNCTIONS
    def register_storage_account(
        self,
        vault_uri,
        account_name,
        resource_id,
        active_key_name="key1",
        regeneration_period="P30D",
        auto_regenerate=True,
    ):
        """Add a storage account to the vault so the vault manages its keys.

        Key Vault only accepts this call from a user, not a service principal.
        """
        logger.info("Adding storage account %s to vault %s", account_name, vault_uri)
        return self._send(
            vault_uri,
            "PUT",
            "/storage/{account}",
            body={
                "resourceId": resource_id,
                "activeKeyName": active_key_name,
                "autoRegenerateKey": auto_regenerate,
                "regenerationPeriod": regeneration_period,
                "attributes": {"enabled": True},
            },
            as_user=True,
            account=account_name,
        )

    def set_active_key(self, vault_uri, account_name, key_name):
        logger.info("Switching active key of %s to %s", account_name, key_name)
        return self._send(
            vault_uri, "PATCH", "/storage/{account}",
            body={"activeKeyName": key_name}, account=account_name
        )

    def set_auto_regenerate(self, vault_uri, account_name, enabled):
        logger.info(
            "%s automatic key regeneration for %s",
            "Enabling" if enabled else "Disabling", account_name
        )
        return self._send(
            vault_uri, "PATCH", "/storage/{account}",
            body={"autoRegenerateKey": enabled}, account=account_name
        )

    def regenerate_key(self, vault_uri, account_name, key_name):
        """Rotate a storage account key through the vault (user only)."""
        logger.info("Regenerating storage account %s %s", account_name, key_name)
        return self._send(
            vault_uri, "POST", "/storage/{account}/regeneratekey",
            body={"keyName": key_name}, as_user=True, account=account_name
        )

    def list_registered_accounts(self, vault_uri):
        return self._list(vault_uri, "/storage")

    def deregister_account(self, vault_uri, account_name):
        """Remove a storage account from vault management."""
        logger.info("Removing storage account %s from vault %s", account_name, vault_uri)
        return self._send(vault_uri, "DELETE", "/storage/{account}", account=account_name)
    # END MANAGED STORAGE ACCOUNT FUNCTIONS

    # BEGIN SAS DEFINITION FUNCTIONS
    def create_sas_definition(
        self, vault_uri, account_name, definition_name, template_uri, sas_type, validity_period
    ):
        """Create a SAS definition; the vault also creates a managed secret issuing its tokens."""
        logger.info(
            "Creating %s SAS definition %s for %s", sas_type, definition_name, account_name
        )
        return self._send(
            vault_uri,
            "PUT",
            "/storage/{account}/sas/{definition}",
            body={
                "templateUri": template_uri,
                "sasType": sas_type,
                "validityPeriod": validity_period,
                "attributes": {"enabled": True},
            },
            account=account_name,
            definition=definition_name,
        )

    def list_sas_definitions(self, vault_uri, account_name):
        return self._list(vault_uri, "/storage/{account}/sas", account=account_name)

    def get_managed_secret(self, secret_id):
        """Read the current value of a managed secret, such as a SAS token."""
        identifier = KeyVaultSecretIdentifier(secret_id)
        with SecretClient(vault_url=identifier.vault_url, credential=self.credential) as client:
            # Managed SAS secrets have no versions
            return client.get_secret(identifier.name).value
    # END SAS DEFINITION FUNCTIONS

    # BEGIN VAULT KEY FUNCTIONS
    def create_key(self, vault_uri, key_name):
        """Create an RSA key, or a new version of it if it already exists."""
        logger.info("Creating key %s in vault %s", key_name, vault_uri)
        with KeyClient(vault_url=vault_uri, credential=self.credential) as client:
            return client.create_rsa_key(key_name, size=2048)

    def list_key_versions(self, vault_uri, key_name):
        with KeyClient(vault_url=vault_uri, credential=self.credential) as client:
            return list(client.list_properties_of_key_versions(key_name))
    # END VAULT KEY FUNCTIONS
