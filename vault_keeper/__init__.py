"""Vault Keeper — server-side secrets vault.

Authenticated users store and retrieve passwords, bank cards, free-form
texts and opaque binary files. Every record is scoped to its owner.

Security Note:
    Record bodies are stored as delivered. Clients are expected to
    encrypt them before upload; the server never interprets them.
"""
from .version import __version__

__all__ = ["__version__"]
