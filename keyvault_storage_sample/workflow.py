"""
Provisioning workflow that hands the keys of a new storage account over to Key Vault.

Steps run strictly in order and the run stops at the first failure. Nothing is
rolled back: resources created by earlier steps are left in place.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .authorization_functions import (
    KEY_OPERATOR_ROLE_NAME,
    KEY_VAULT_SERVICE_PRINCIPAL_ID,
    RoleAssignmentExistsError,
)
from .blob_functions import (
    BlobDataService,
    build_account_sas_template,
    build_container_sas_template,
)
from .credentials import get_principal_object_id
from .storage_functions import SasPolicy, generate_storage_account_name
from .vault_functions import full_permissions, key_wrapping_permissions
from .workflow_steps import WorkflowStep, WorkflowVariant

logger = logging.getLogger(__name__)

SAMPLE_CONTAINER = "sample-container"
ACCOUNT_SAS_DEFINITION = "acctall"
CONTAINER_SAS_DEFINITION = "blobcontall"
SAS_VALIDITY_PERIOD = "PT2H"
KEY_REGENERATION_PERIOD = "P30D"
ENCRYPTION_KEY_NAME = "storage-encryption-key"


@dataclass
class StepResult:
    step: WorkflowStep
    status: str
    details: str = ""


class ProvisioningWorkflow:
    """Runs the vault/storage provisioning steps against injected service adapters."""

    def __init__(
        self,
        config,
        vault_service,
        storage_service,
        authorization_service,
        blob_service_factory: Callable[[str, str], BlobDataService] = BlobDataService.from_sas_token,
        user_credential=None,
        principal_resolver: Callable = get_principal_object_id,
        account_name: Optional[str] = None,
        sas_policy: Optional[SasPolicy] = None,
    ):
        self.config = config
        self.vault_service = vault_service
        self.storage_service = storage_service
        self.authorization_service = authorization_service
        self.blob_service_factory = blob_service_factory
        self.user_credential = user_credential
        self.principal_resolver = principal_resolver
        self.account_name = account_name or generate_storage_account_name()
        self.sas_policy = sas_policy or SasPolicy()

        self.vault = None
        self.storage_account = None
        self.results: List[StepResult] = []

    @property
    def variant(self) -> WorkflowVariant:
        return self.config.variant

    @property
    def vault_uri(self) -> str:
        return self.vault.properties.vault_uri

    def _steps(self):
        managed = self.variant == WorkflowVariant.MANAGED_STORAGE
        return [
            (WorkflowStep.ACQUIRE_VAULT, self.acquire_vault),
            (WorkflowStep.CREATE_STORAGE_ACCOUNT, self.create_storage_account),
            (WorkflowStep.GRANT_KEY_OPERATOR_ROLE, self.grant_key_operator_role),
            (WorkflowStep.GRANT_VAULT_ACCESS, self.grant_vault_access),
            (WorkflowStep.REGISTER_STORAGE_ACCOUNT,
             self.register_storage_account if managed else self.bind_encryption_key),
            (WorkflowStep.UPDATE_STORAGE_ACCOUNT,
             self.update_storage_account if managed else self.rotate_encryption_key),
            (WorkflowStep.REGENERATE_KEY,
             self.regenerate_storage_account_key if managed else self.regenerate_account_key),
            (WorkflowStep.LIST,
             self.list_storage_accounts if managed else self.list_encryption_key_versions),
            (WorkflowStep.ISSUE_SAS,
             self.issue_sas_definitions if managed else self.issue_account_sas),
            (WorkflowStep.TEARDOWN,
             self.remove_storage_account if managed else self.revert_encryption_key),
        ]

    def run(self) -> List[StepResult]:
        """Run every step in order, re-raising the first failure."""
        logger.info("Running %s workflow", self.variant.value)
        for step, action in self._steps():
            logger.info("Step %d: %s", step.value, step.label)
            try:
                details = action()
            except Exception as e:
                self.results.append(StepResult(step, "failed", str(e)))
                logger.error("Step %d (%s) failed: %s", step.value, step.label, e)
                raise
            self.results.append(StepResult(step, "passed", details or ""))
        return self.results

    # BEGIN SHARED STEPS
    def acquire_vault(self):
        self.vault = self.vault_service.get_or_create(
            self.config.vault_name,
            enable_purge_protection=self.variant == WorkflowVariant.ENCRYPTION,
        )
        return f"Using vault {self.vault.name}"

    def create_storage_account(self):
        self.storage_account = self.storage_service.create_account(
            self.config.group_name,
            self.account_name,
            self.config.location,
            managed_identity=self.variant == WorkflowVariant.ENCRYPTION,
        )
        return f"Created storage account {self.storage_account.name}"

    def grant_key_operator_role(self):
        """Let the Key Vault service operate the storage account keys."""
        role = self.authorization_service.find_role_definition("/", KEY_OPERATOR_ROLE_NAME)
        try:
            self.authorization_service.create_role_assignment(
                self.storage_account.id, role.id, KEY_VAULT_SERVICE_PRINCIPAL_ID
            )
        except RoleAssignmentExistsError:
            logger.info('Key Vault already holds "%s" on the storage account', KEY_OPERATOR_ROLE_NAME)
            return "Role assignment already exists"

        logger.info('Granted role "%s" to Key Vault on the storage account', KEY_OPERATOR_ROLE_NAME)
        return "Role assignment created"

    def grant_vault_access(self):
        if self.variant == WorkflowVariant.MANAGED_STORAGE:
            # Only a signed-in user can add the storage account to the vault
            if self.user_credential is None:
                raise ValueError("The managed-storage workflow needs a user credential")
            object_id = self.principal_resolver(self.user_credential)
            permissions = full_permissions()
        else:
            object_id = self.storage_account.identity.principal_id
            permissions = key_wrapping_permissions()

        self.vault = self.vault_service.add_access_policy(self.vault, object_id, permissions)
        return f"Granted {object_id} access to vault {self.vault.name}"
    # END SHARED STEPS

    # BEGIN MANAGED STORAGE STEPS
    def register_storage_account(self):
        self.vault_service.register_storage_account(
            self.vault_uri,
            self.storage_account.name,
            self.storage_account.id,
            active_key_name="key1",
            regeneration_period=KEY_REGENERATION_PERIOD,
        )
        return f"Added {self.storage_account.name} to the vault"

    def update_storage_account(self):
        self.vault_service.set_active_key(self.vault_uri, self.storage_account.name, "key2")
        self.vault_service.set_auto_regenerate(self.vault_uri, self.storage_account.name, False)
        return "Active key is key2, automatic regeneration disabled"

    def regenerate_storage_account_key(self):
        self.vault_service.regenerate_key(self.vault_uri, self.storage_account.name, "key1")
        return "Regenerated key1"

    def list_storage_accounts(self):
        accounts = self.vault_service.list_registered_accounts(self.vault_uri)
        for account in accounts:
            logger.info("Storage account: '%s'", account.get("resourceId"))
        return f"{len(accounts)} storage account(s) in the vault"

    def issue_sas_definitions(self):
        self.create_account_sas_definition()
        self.create_container_sas_definition()
        definitions = self.vault_service.list_sas_definitions(self.vault_uri, self.storage_account.name)
        for definition in definitions:
            logger.info("SAS definition id: %s", definition.get("id"))
        return f"{len(definitions)} SAS definition(s) for {self.storage_account.name}"

    def create_account_sas_definition(self):
        """Create an account SAS definition and write a blob with a token it issues."""
        # The template only conveys the SAS parameters; the vault signs issued tokens
        template = build_account_sas_template(self.storage_account.name, self.sas_policy)
        definition = self.vault_service.create_sas_definition(
            self.vault_uri,
            self.storage_account.name,
            ACCOUNT_SAS_DEFINITION,
            template,
            "account",
            SAS_VALIDITY_PERIOD,
        )

        token = self.vault_service.get_managed_secret(definition["sid"])
        with self.blob_service_factory(self.storage_account.name, token) as blob_service:
            blob_service.create_container_if_absent(SAMPLE_CONTAINER)
            blob_service.upload_blob(SAMPLE_CONTAINER, "blob1", "test blob1 data")
        logger.info("Created sample blob using account SAS definition")

    def create_container_sas_definition(self):
        """Create a container SAS definition, then write, list and delete blobs with it."""
        template = build_container_sas_template(self.storage_account.name, SAMPLE_CONTAINER)
        definition = self.vault_service.create_sas_definition(
            self.vault_uri,
            self.storage_account.name,
            CONTAINER_SAS_DEFINITION,
            template,
            "service",
            SAS_VALIDITY_PERIOD,
        )

        token = self.vault_service.get_managed_secret(definition["sid"])
        with self.blob_service_factory(self.storage_account.name, token) as blob_service:
            blob_service.upload_blob(SAMPLE_CONTAINER, "blob2", "test blob2 data")
            for blob_name in blob_service.list_blobs(SAMPLE_CONTAINER):
                blob_service.delete_blob(SAMPLE_CONTAINER, blob_name)
        logger.info("Created sample blob using container SAS definition")

    def remove_storage_account(self):
        self.vault_service.deregister_account(self.vault_uri, self.storage_account.name)
        return "The storage account has been removed from the vault"
    # END MANAGED STORAGE STEPS

    # BEGIN ENCRYPTION STEPS
    def _bind_new_key_version(self):
        key = self.vault_service.create_key(self.vault_uri, ENCRYPTION_KEY_NAME)
        self.storage_service.bind_encryption_key(
            self.config.group_name,
            self.storage_account.name,
            self.vault_uri,
            key.name,
            key.properties.version,
        )
        return key.properties.version

    def bind_encryption_key(self):
        version = self._bind_new_key_version()
        return f"Encrypting with {ENCRYPTION_KEY_NAME} version {version}"

    def rotate_encryption_key(self):
        version = self._bind_new_key_version()
        return f"Rotated to {ENCRYPTION_KEY_NAME} version {version}"

    def regenerate_account_key(self):
        self.storage_service.regenerate_account_key(
            self.config.group_name, self.storage_account.name, "key1"
        )
        return "Regenerated key1"

    def list_encryption_key_versions(self):
        versions = self.vault_service.list_key_versions(self.vault_uri, ENCRYPTION_KEY_NAME)
        for version in versions:
            logger.info("Key version: %s", version.id)
        return f"{len(versions)} version(s) of {ENCRYPTION_KEY_NAME}"

    def issue_account_sas(self):
        token = self.storage_service.issue_account_sas(
            self.config.group_name, self.storage_account.name, self.sas_policy
        )
        with self.blob_service_factory(self.storage_account.name, token) as blob_service:
            blob_service.create_container_if_absent(SAMPLE_CONTAINER)
            blob_service.upload_blob(SAMPLE_CONTAINER, "blob1", "test blob1 data")
        return "Created sample blob using account SAS"

    def revert_encryption_key(self):
        self.storage_service.use_account_managed_keys(self.config.group_name, self.storage_account.name)
        return "Storage account uses Microsoft-managed keys again"
    # END ENCRYPTION STEPS
