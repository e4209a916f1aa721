"""
Authorization functions for granting Azure Key Vault access to a storage account.
These functions serve as the interface between the workflow and Azure RBAC.
"""
import logging
import uuid

from azure.core.exceptions import HttpResponseError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

logger = logging.getLogger(__name__)

KEY_OPERATOR_ROLE_NAME = "Storage Account Key Operator Service Role"

# The Azure Key Vault service principal
KEY_VAULT_SERVICE_PRINCIPAL_ID = "93c27d83-f79b-4cb2-8dd4-4aa716542e74"

ROLE_ASSIGNMENT_EXISTS = "RoleAssignmentExists"


class RoleAssignmentExistsError(Exception):
    """The requested role assignment is already in place."""

    def __init__(self, scope, principal_id):
        super().__init__(
            f"Principal {principal_id} already holds the role at scope {scope}"
        )
        self.scope = scope
        self.principal_id = principal_id


def _error_code(error: HttpResponseError):
    odata_error = getattr(error, "error", None)
    return getattr(odata_error, "code", None)


class AuthorizationService:
    """Role definition lookup and role assignment creation."""

    def __init__(self, client: AuthorizationManagementClient):
        self.client = client

    @classmethod
    def from_credential(cls, credential, subscription_id):
        return cls(AuthorizationManagementClient(credential, subscription_id))

    # BEGIN FIND ROLE DEFINITION FUNCTION
    def find_role_definition(self, scope, role_name):
        """Return the role definition whose name matches role_name."""
        role_filter = f"roleName eq '{role_name}'"
        for definition in self.client.role_definitions.list(scope, filter=role_filter):
            return definition

        raise LookupError(f"Role definition '{role_name}' not found at scope '{scope}'")
    # END FIND ROLE DEFINITION FUNCTION

    # BEGIN CREATE ROLE ASSIGNMENT FUNCTION
    def create_role_assignment(self, scope, role_definition_id, principal_id, assignment_name=None):
        """Assign a role to a principal over a scope.

        Raises RoleAssignmentExistsError when Azure reports the assignment
        already exists; every other error propagates unchanged.
        """
        # Role assignment names are GUIDs chosen by the caller
        assignment_name = assignment_name or str(uuid.uuid4())
        parameters = RoleAssignmentCreateParameters(
            role_definition_id=role_definition_id,
            principal_id=principal_id,
        )

        try:
            return self.client.role_assignments.create(
                scope=scope,
                role_assignment_name=assignment_name,
                parameters=parameters,
            )
        except HttpResponseError as e:
            if _error_code(e) == ROLE_ASSIGNMENT_EXISTS:
                raise RoleAssignmentExistsError(scope, principal_id) from e
            raise
    # END CREATE ROLE ASSIGNMENT FUNCTION
