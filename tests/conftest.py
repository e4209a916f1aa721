"""
Shared fixtures for the managed storage account sample tests.

All Azure services are replaced by mocks or in-memory fakes; no network calls.
"""
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

# Make the keyvault_storage_sample package importable without installing it
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from keyvault_storage_sample.config import SampleConfig  # noqa: E402
from keyvault_storage_sample.workflow_steps import WorkflowVariant  # noqa: E402

VAULT_URI = "https://kv-sample.vault.azure.net/"
ACCOUNT_NAME = "sa0123456789abcdef0123"
ACCOUNT_ID = (
    "/subscriptions/sub-id/resourceGroups/azure-sample-group"
    f"/providers/Microsoft.Storage/storageAccounts/{ACCOUNT_NAME}"
)

# Operation -> SAS permission letter it needs
REQUIRED_PERMISSIONS = {
    "create_container": "c",
    "upload_blob": "w",
    "list_blobs": "l",
    "delete_blob": "d",
    "set_blob_tags": "t",
}


def make_config(**overrides):
    values = dict(
        subscription_id="sub-id",
        tenant_id="tenant-id",
        client_id="client-id",
        client_secret="client-secret",
        client_object_id="operator-oid",
    )
    values.update(overrides)
    return SampleConfig(**values)


def sas_permissions(token):
    """Return the set of permission letters granted by a SAS token or SAS URL."""
    query = urlsplit(token).query if token.startswith("https://") else token.lstrip("?")
    return set(parse_qs(query).get("sp", [""])[0])


class FakeBlobService:
    """Blob data plane that enforces the permissions carried by its SAS token."""

    def __init__(self, store, account_name, sas_token):
        self.store = store
        self.account_name = account_name
        self.permissions = sas_permissions(sas_token)
        self.tags = {}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def _authorize(self, operation):
        if REQUIRED_PERMISSIONS[operation] not in self.permissions:
            raise HttpResponseError(
                message=f"AuthorizationPermissionMismatch: {operation} is not allowed by the SAS token"
            )

    def create_container_if_absent(self, container_name):
        self._authorize("create_container")
        self.store.setdefault(container_name, {})

    def upload_blob(self, container_name, blob_name, content):
        self._authorize("upload_blob")
        if container_name not in self.store:
            raise ResourceNotFoundError(message=f"Container {container_name} does not exist")
        self.store[container_name][blob_name] = content

    def set_blob_tags(self, container_name, blob_name, tags):
        self._authorize("set_blob_tags")
        self.tags[(container_name, blob_name)] = tags

    def list_blobs(self, container_name):
        self._authorize("list_blobs")
        return list(self.store[container_name])

    def delete_blob(self, container_name, blob_name):
        self._authorize("delete_blob")
        del self.store[container_name][blob_name]


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def encryption_config():
    return make_config(variant=WorkflowVariant.ENCRYPTION)


@pytest.fixture
def vault():
    return SimpleNamespace(
        name="kv-sample",
        location="westus",
        tags={},
        properties=SimpleNamespace(vault_uri=VAULT_URI, access_policies=[]),
    )


@pytest.fixture
def storage_account():
    return SimpleNamespace(
        name=ACCOUNT_NAME,
        id=ACCOUNT_ID,
        identity=SimpleNamespace(principal_id="storage-identity-oid"),
    )


@pytest.fixture
def blob_store():
    """Containers and blobs written through any FakeBlobService."""
    return {}


@pytest.fixture
def blob_factory(blob_store):
    created = []

    def factory(account_name, sas_token):
        service = FakeBlobService(blob_store, account_name, sas_token)
        created.append(service)
        return service

    factory.created = created
    return factory


@pytest.fixture
def services(vault, storage_account):
    """Mocked vault, storage and authorization services attached to one call recorder."""
    vault_service = MagicMock(name="vault_service")
    storage_service = MagicMock(name="storage_service")
    authorization_service = MagicMock(name="authorization_service")

    vault_service.get_or_create.return_value = vault
    vault_service.add_access_policy.return_value = vault
    vault_service.list_registered_accounts.return_value = [
        {"id": f"{VAULT_URI}storage/{ACCOUNT_NAME}", "resourceId": ACCOUNT_ID}
    ]
    vault_service.create_key.side_effect = [
        SimpleNamespace(name="storage-encryption-key", properties=SimpleNamespace(version="v1")),
        SimpleNamespace(name="storage-encryption-key", properties=SimpleNamespace(version="v2")),
    ]
    vault_service.list_key_versions.return_value = [
        SimpleNamespace(id=f"{VAULT_URI}keys/storage-encryption-key/v1"),
        SimpleNamespace(id=f"{VAULT_URI}keys/storage-encryption-key/v2"),
    ]

    # The fake vault issues tokens carrying exactly the template's parameters
    managed_secrets = {}

    def create_sas_definition(vault_uri, account_name, definition_name, template_uri, sas_type, validity):
        secret_id = f"{vault_uri}secrets/{account_name}-{definition_name}"
        token = urlsplit(template_uri).query if template_uri.startswith("https://") else template_uri
        managed_secrets[secret_id] = token
        return {
            "id": f"{vault_uri}storage/{account_name}/sas/{definition_name}",
            "sid": secret_id,
            "templateUri": template_uri,
            "sasType": sas_type,
            "validityPeriod": validity,
        }

    vault_service.create_sas_definition.side_effect = create_sas_definition
    vault_service.get_managed_secret.side_effect = managed_secrets.__getitem__
    vault_service.list_sas_definitions.side_effect = lambda vault_uri, account_name: [
        {"id": definition_id}
        for definition_id in (
            f"{vault_uri}storage/{account_name}/sas/acctall",
            f"{vault_uri}storage/{account_name}/sas/blobcontall",
        )
    ]

    storage_service.create_account.return_value = storage_account
    storage_service.issue_account_sas.side_effect = lambda group, name, policy: (
        f"sv=2022-11-02&ss={policy.services}&srt={policy.resource_types}"
        f"&sp={policy.permissions}&se=2030-01-01T00%3A00%3A00Z&spr=https&sig=fake"
    )

    authorization_service.find_role_definition.return_value = SimpleNamespace(
        id="/providers/Microsoft.Authorization/roleDefinitions/key-operator"
    )

    recorder = MagicMock(name="recorder")
    recorder.attach_mock(vault_service, "vault")
    recorder.attach_mock(storage_service, "storage")
    recorder.attach_mock(authorization_service, "authorization")

    return SimpleNamespace(
        vault=vault_service,
        storage=storage_service,
        authorization=authorization_service,
        recorder=recorder,
        managed_secrets=managed_secrets,
    )
