#!/usr/bin/env python3
"""
Azure Key Vault - Managed Storage Account Key Sample.

Creates (or reuses) a key vault and a new storage account, hands the storage
account keys over to the vault, rotates them and issues SAS tokens through it.
"""
import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from .authorization_functions import AuthorizationService
from .config import ConfigurationError, load_config
from .credentials import get_management_credential, get_user_credential
from .storage_functions import StorageService
from .vault_functions import VaultService
from .workflow import ProvisioningWorkflow
from .workflow_steps import WorkflowVariant


def configure_logging():
    log_level = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Keep Azure SDK request logging out of the sample output
    logging.getLogger("azure").setLevel(logging.WARNING)


def build_workflow(config):
    """Wire the workflow to the Azure SDK backed services."""
    credential = get_management_credential(config)
    user_credential = None
    if config.variant == WorkflowVariant.MANAGED_STORAGE:
        user_credential = get_user_credential(config)

    # Only a user with access to the account keys may create and register the account
    control_credential = user_credential or credential

    return ProvisioningWorkflow(
        config,
        VaultService.from_config(config, credential, user_credential=user_credential),
        StorageService.from_credential(control_credential, config.subscription_id),
        AuthorizationService.from_credential(control_credential, config.subscription_id),
        user_credential=user_credential,
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Delegate storage account key management to Azure Key Vault."
    )
    parser.add_argument(
        "--variant",
        choices=[v.value for v in WorkflowVariant],
        help="Workflow variant (default: WORKFLOW_VARIANT or managed-storage)",
    )
    parser.add_argument(
        "--vault-name",
        help="Use an existing vault instead of creating one (default: AZURE_SAMPLE_VAULT_NAME)",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging()

    environ = dict(os.environ)
    if args.variant:
        environ["WORKFLOW_VARIANT"] = args.variant
    if args.vault_name:
        environ["AZURE_SAMPLE_VAULT_NAME"] = args.vault_name

    try:
        config = load_config(environ)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    print("Azure Key Vault - Managed Storage Account Key Sample")

    try:
        workflow = build_workflow(config)
        with workflow.vault_service:
            workflow.run()
    except Exception as e:
        print(f"Sample failed: {e}", file=sys.stderr)
        return 1

    print("Sample execution complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
