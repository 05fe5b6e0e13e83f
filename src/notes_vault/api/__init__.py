"""Notes Vault - local REST API."""
