"""
Configuration loading for the managed storage account sample.
Values are read once from the environment and passed to the workflow explicitly.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .workflow_steps import WorkflowVariant

REQUIRED_VARIABLES = (
    "AZURE_SUBSCRIPTION_ID",
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_OID",
)

DEFAULT_LOCATION = "westus"
DEFAULT_RESOURCE_GROUP = "azure-sample-group"


class ConfigurationError(ValueError):
    """Raised when the environment does not describe a usable configuration."""

    def __init__(self, message, missing=()):
        super().__init__(message)
        self.missing = list(missing)


@dataclass(frozen=True)
class SampleConfig:
    subscription_id: str
    tenant_id: str
    client_id: str
    client_secret: str
    client_object_id: str
    location: str = DEFAULT_LOCATION
    group_name: str = DEFAULT_RESOURCE_GROUP
    vault_name: Optional[str] = None
    variant: WorkflowVariant = WorkflowVariant.MANAGED_STORAGE

    def __repr__(self) -> str:
        return (
            f"SampleConfig(subscription_id={self.subscription_id!r}, "
            f"tenant_id={self.tenant_id!r}, client_id={self.client_id!r}, "
            f"client_secret=***, location={self.location!r}, "
            f"group_name={self.group_name!r}, vault_name={self.vault_name!r}, "
            f"variant={self.variant.value!r})"
        )


def load_config(environ: Optional[Mapping[str, str]] = None) -> SampleConfig:
    """Build a SampleConfig from environment variables.

    Every missing required variable is reported in a single ConfigurationError.
    """
    if environ is None:
        environ = os.environ

    values = {name: (environ.get(name) or "").strip() for name in REQUIRED_VARIABLES}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            "please set/export the following environment variables: "
            + ", ".join(missing),
            missing=missing,
        )

    variant_name = (environ.get("WORKFLOW_VARIANT") or "").strip()
    try:
        variant = WorkflowVariant(variant_name) if variant_name else WorkflowVariant.MANAGED_STORAGE
    except ValueError:
        choices = ", ".join(v.value for v in WorkflowVariant)
        raise ConfigurationError(
            f"WORKFLOW_VARIANT must be one of: {choices} (got {variant_name!r})"
        ) from None

    return SampleConfig(
        subscription_id=values["AZURE_SUBSCRIPTION_ID"],
        tenant_id=values["AZURE_TENANT_ID"],
        client_id=values["AZURE_CLIENT_ID"],
        client_secret=values["AZURE_CLIENT_SECRET"],
        client_object_id=values["AZURE_CLIENT_OID"],
        location=(environ.get("AZURE_LOCATION") or "").strip() or DEFAULT_LOCATION,
        group_name=(environ.get("AZURE_RESOURCE_GROUP") or "").strip() or DEFAULT_RESOURCE_GROUP,
        vault_name=(environ.get("AZURE_SAMPLE_VAULT_NAME") or "").strip() or None,
        variant=variant,
    )
