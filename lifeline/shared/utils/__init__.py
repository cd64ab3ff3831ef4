"""Shared utilities for Lifeline services."""
from .pii import hash_pii, hash_identity, configure_pii_salt

__all__ = ["hash_pii", "hash_identity", "configure_pii_salt"]
