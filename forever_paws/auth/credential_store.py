"""
Encrypted-at-rest key/value store for the session token and remembered
credentials.

Uses Fernet (symmetric AES + HMAC) via the cryptography library. The whole
key/value map is one encrypted JSON blob, written atomically with 0600
permissions. Failures are logged and reported through return values; a
missing or unreadable credential simply reads as absent.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from ..utils.logger import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "session.access_token"
REFRESH_TOKEN_KEY = "session.refresh_token"
SESSION_USER_KEY = "session.user"
REMEMBERED_EMAIL_KEY = "remembered.email"
REMEMBERED_PASSWORD_KEY = "remembered.password"

FILE_MODE = 0o600


def _write_private(path: Path, payload: bytes) -> None:
    """Atomically replace `path` with `payload`, readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    temp_path = Path(temp_name)
    try:
        os.chmod(temp_name, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, str(path))
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def load_or_create_key(key_path: Path) -> bytes:
    if key_path.exists():
        return key_path.read_bytes().strip()
    key = Fernet.generate_key()
    _write_private(key_path, key)
    logger.info("Generated credential store key", path=str(key_path))
    return key


class CredentialStore:
    """put/get/delete over an encrypted file. Never raises on I/O failure."""

    def __init__(self, path: Path, encryption_key: Optional[str] = None):
        self.path = Path(path)
        self._lock = threading.Lock()
        if encryption_key:
            key = encryption_key.encode("utf-8")
        else:
            key = load_or_create_key(self.path.with_suffix(".key"))
        self._fernet = Fernet(key)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            plain = self._fernet.decrypt(self.path.read_bytes())
            data = json.loads(plain.decode("utf-8"))
        except InvalidToken:
            logger.warning("Credential store could not be decrypted; treating as empty", path=str(self.path))
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Credential store unreadable; treating as empty", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        token = self._fernet.encrypt(json.dumps(data).encode("utf-8"))
        _write_private(self.path, token)

    def put(self, key: str, value: str) -> bool:
        with self._lock:
            data = self._load()
            data[key] = value
            try:
                self._save(data)
            except OSError as e:
                logger.error("Credential store write failed", key=key, error=str(e))
                return False
        return True

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def delete(self, key: str) -> bool:
        """Delete a key. Deleting a key that does not exist is a success."""
        with self._lock:
            data = self._load()
            if key not in data:
                return True
            del data[key]
            try:
                if data:
                    self._save(data)
                elif self.path.exists():
                    self.path.unlink()
            except OSError as e:
                logger.error("Credential store delete failed", key=key, error=str(e))
                return False
        return True
