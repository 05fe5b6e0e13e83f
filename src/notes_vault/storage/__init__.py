"""Notes Vault - content-addressed blob storage."""

from .blob_store import BlobStore, compute_hash, is_valid_hash

__all__ = ["BlobStore", "compute_hash", "is_valid_hash"]
