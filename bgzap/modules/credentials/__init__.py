"""
Credentials Module

API token storage consumed by the remote processing backend.
"""

from bgzap.modules.credentials.store import (
    CredentialStore,
    InMemoryCredentialStore,
    FileCredentialStore,
    RedisCredentialStore,
    close_credential_store,
    get_credential_store,
)

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "FileCredentialStore",
    "RedisCredentialStore",
    "close_credential_store",
    "get_credential_store",
]
