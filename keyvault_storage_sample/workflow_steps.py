"""Ordered steps of the provisioning workflow and the supported variants."""
from enum import Enum


class WorkflowVariant(str, Enum):
    # The vault owns and rotates the storage account keys
    MANAGED_STORAGE = "managed-storage"
    # The storage account encrypts its data with a key held in the vault
    ENCRYPTION = "encryption"


class WorkflowStep(Enum):
    ACQUIRE_VAULT = 1
    CREATE_STORAGE_ACCOUNT = 2
    GRANT_KEY_OPERATOR_ROLE = 3
    GRANT_VAULT_ACCESS = 4
    REGISTER_STORAGE_ACCOUNT = 5
    UPDATE_STORAGE_ACCOUNT = 6
    REGENERATE_KEY = 7
    LIST = 8
    ISSUE_SAS = 9
    TEARDOWN = 10

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").capitalize()
