"""
qbreport authentication and token management.

Provides the OAuth2 grants, refresh token storage, and the token source
that keeps a rotated refresh token persisted before it is used.
"""

from qbreport.auth.oauth2 import OAuth2Client, TokenData
from qbreport.auth.token_source import TokenSource
from qbreport.auth.token_store import EncryptedFileTokenStore, FileTokenStore, TokenStore

__all__ = [
    "EncryptedFileTokenStore",
    "FileTokenStore",
    "OAuth2Client",
    "TokenData",
    "TokenSource",
    "TokenStore",
]
