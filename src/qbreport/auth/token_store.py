"""
Refresh token storage, the single durable slot holding the current token.

The store is the only mutable state shared between requests. Reads and
writes are serialized by a lock, and writes replace the file atomically,
so a reader never observes a half-written token.

Two backends:
- :class:`FileTokenStore` keeps the token as trimmed plain text.
- :class:`EncryptedFileTokenStore` keeps it Fernet-encrypted, with a key
  derived from a passphrase and a salt file stored next to the token.
"""

from __future__ import annotations

import base64
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from qbreport.errors import TokenNotFoundError, TokenStoreError

logger = logging.getLogger("qbreport.auth.token_store")

_FILE_MODE = 0o600


class TokenStore(ABC):
    """Durable holder of the current refresh token."""

    @abstractmethod
    def get(self) -> str:
        """Return the current refresh token.

        Raises:
            TokenNotFoundError: If no token is stored.
            TokenStoreError: If the store cannot be read.
        """
        ...

    @abstractmethod
    def put(self, refresh_token: str) -> None:
        """Replace the current refresh token. No history is kept."""
        ...

    def seed(self, bootstrap_token: str) -> str:
        """Store ``bootstrap_token`` unless a token is already stored.

        An existing token wins: it may be a newer rotation than the
        bootstrap value from the environment.
        """
        try:
            current = self.get()
            logger.info("Using stored refresh token")
            return current
        except TokenNotFoundError:
            self.put(bootstrap_token)
            logger.info("Seeded token store with bootstrap refresh token")
            return bootstrap_token.strip()


class FileTokenStore(TokenStore):
    """Plain-text file store guarded by an in-process lock.

    Usage::

        store = FileTokenStore(".token")
        store.put("AB11...")
        token = store.get()
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            try:
                raw = self.path.read_bytes()
            except FileNotFoundError:
                raise TokenNotFoundError(f"refresh token not found in: {self.path}") from None
            except OSError as e:
                raise TokenStoreError(f"unable to read {self.path}: {e}") from e

            token = self._decode(raw).strip()
            if not token:
                raise TokenNotFoundError(f"refresh token not found in: {self.path}")
            return token

    def put(self, refresh_token: str) -> None:
        token = (refresh_token or "").strip()
        if not token:
            raise TokenStoreError("refusing to store an empty refresh token")

        data = self._encode(token)
        with self._lock:
            self._atomic_write(data)
        logger.debug("Stored refresh token in %s", self.path)

    # ------------------------------------------------------------------
    # Encoding hooks
    # ------------------------------------------------------------------

    def _encode(self, token: str) -> bytes:
        return token.encode()

    def _decode(self, raw: bytes) -> str:
        try:
            return raw.decode()
        except UnicodeDecodeError as e:
            raise TokenStoreError(f"unable to decode {self.path}: {e}") from e

    def _atomic_write(self, data: bytes) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        except OSError as e:
            raise TokenStoreError(f"unable to write {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp_name, _FILE_MODE)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TokenStoreError(f"unable to write {self.path}: {e}") from e


# ---------------------------------------------------------------------------
# Encryption helpers
# ---------------------------------------------------------------------------

def _derive_key(passphrase: str, salt_file: Path) -> bytes:
    """Derive a Fernet key from a passphrase and a stored salt.

    The salt is created on first use and kept next to the token file.
    """
    if salt_file.exists():
        salt = salt_file.read_bytes()
    else:
        salt = os.urandom(16)
        salt_file.parent.mkdir(parents=True, exist_ok=True)
        salt_file.write_bytes(salt)
        salt_file.chmod(_FILE_MODE)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=480000,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode()))


class EncryptedFileTokenStore(FileTokenStore):
    """File store that keeps the refresh token Fernet-encrypted at rest."""

    def __init__(self, path: str | Path, passphrase: str) -> None:
        super().__init__(path)
        if not passphrase:
            raise TokenStoreError("an encryption passphrase is required")
        self.salt_file = self.path.with_name(f"{self.path.name}.salt")
        self._fernet = Fernet(_derive_key(passphrase, self.salt_file))

    def _encode(self, token: str) -> bytes:
        return self._fernet.encrypt(token.encode())

    def _decode(self, raw: bytes) -> str:
        if not raw.strip():
            return ""
        try:
            return self._fernet.decrypt(raw.strip()).decode()
        except InvalidToken:
            raise TokenStoreError(f"unable to decrypt {self.path} (wrong passphrase?)") from None
