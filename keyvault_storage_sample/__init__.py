"""Azure Key Vault managed storage account key sample."""
