"""Relational store, blob store and the retry executor."""
from .files import BlobFile, FileStorage
from .models import Bank, File, Password, Record, Text, User
from .retry import RetryPolicy, retry
from .storage import Storage

__all__ = [
    "Storage",
    "FileStorage",
    "BlobFile",
    "RetryPolicy",
    "retry",
    "User",
    "Record",
    "Password",
    "Bank",
    "Text",
    "File",
]
