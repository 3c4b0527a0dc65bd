"""Hasher, token and client-side crypter collaborators."""
from .crypter import Crypter
from .hasher import Hasher
from .tokener import Tokener

__all__ = ["Crypter", "Hasher", "Tokener"]
