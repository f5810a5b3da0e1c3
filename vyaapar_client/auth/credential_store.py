"""
Credential storage for the Vyaapar client.

This module provides durable key-value storage for session tokens and the user
profile, using the system keyring or an encrypted file as fallback. Every
backend exposes the same ``get/set/delete`` interface and swallows platform
failures so that callers never branch on platform and never crash on startup.
"""

import os
import json
import logging
import threading
from datetime import datetime
from typing import Optional, Dict
from pathlib import Path
import base64

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from vyaapar_shared.exceptions import CredentialStoreError, ErrorCode
from vyaapar_shared.interfaces import ICredentialStore
from vyaapar_shared.models import Session, User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = 'bca_access_token'
REFRESH_TOKEN_KEY = 'bca_refresh_token'
USER_KEY = 'bca_user'
EXPIRES_AT_KEY = 'bca_token_expires_at'

SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY, EXPIRES_AT_KEY)

DEFAULT_SERVICE_NAME = "vyaapar-client"


def default_storage_path() -> Path:
    """Get path for encrypted file storage."""
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        config_dir = Path(xdg_config) / 'vyaapar'
    else:
        config_dir = Path.home() / '.config' / 'vyaapar'
    return config_dir / 'credentials.enc'


def keyring_available(service_name: str = DEFAULT_SERVICE_NAME) -> bool:
    """Check if the system keyring can round-trip a value."""
    try:
        test_key = f"{service_name}_probe"
        keyring.set_password(service_name, test_key, "probe")
        result = keyring.get_password(service_name, test_key)
        keyring.delete_password(service_name, test_key)
        return result == "probe"
    except Exception as e:
        logger.debug(f"Keyring not available: {e}")
        return False


class MemoryCredentialStore(ICredentialStore):
    """Process-local store used for previews and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> bool:
        with self._lock:
            self._values[key] = value
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._values.pop(key, None)
        return True

    def keys(self):
        with self._lock:
            return list(self._values)


class KeyringCredentialStore(ICredentialStore):
    """
    Store backed by the operating system keyring.

    Each key is an independent keyring entry, so writes are atomic per key.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        self.service_name = service_name

    def get(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, key)
        except Exception as e:
            logger.error(f"Failed to read '{key}' from keyring: {e}")
            return None

    def set(self, key: str, value: str) -> bool:
        try:
            keyring.set_password(self.service_name, key, value)
            return True
        except Exception as e:
            logger.error(f"Failed to write '{key}' to keyring: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            keyring.delete_password(self.service_name, key)
            return True
        except PasswordDeleteError:
            # Already absent
            return True
        except Exception as e:
            logger.error(f"Failed to delete '{key}' from keyring: {e}")
            return False


class EncryptedFileCredentialStore(ICredentialStore):
    """
    Fallback store keeping all values in one Fernet-encrypted JSON file.

    The Fernet key lives in the keyring when one is usable, otherwise in a
    0600 key file next to the data file. A lock serializes the
    read-modify-write cycle so each key update is atomic.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        service_name: str = DEFAULT_SERVICE_NAME,
        use_keyring_for_key: bool = False
    ):
        self.storage_path = Path(storage_path) if storage_path else default_storage_path()
        self.key_path = self.storage_path.with_suffix('.key')
        self.service_name = service_name
        self.use_keyring_for_key = use_keyring_for_key

        self._encryption_key: Optional[bytes] = None
        self._lock = threading.Lock()

    def _get_encryption_key(self) -> bytes:
        """Get or create encryption key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.use_keyring_for_key:
            try:
                stored_key = keyring.get_password(self.service_name, "encryption_key")
                if stored_key:
                    self._encryption_key = base64.b64decode(stored_key.encode())
                    return self._encryption_key
            except KeyringError as e:
                logger.warning(f"Failed to get encryption key from keyring: {e}")

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()

        if self.use_keyring_for_key:
            try:
                keyring.set_password(self.service_name, "encryption_key", base64.b64encode(key).decode())
                self._encryption_key = key
                return key
            except KeyringError as e:
                logger.warning(f"Failed to store encryption key in keyring: {e}")

        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _load_all(self) -> Dict[str, str]:
        if not self.storage_path.exists():
            return {}

        fernet = Fernet(self._get_encryption_key())
        try:
            decrypted = fernet.decrypt(self.storage_path.read_bytes()).decode()
        except InvalidToken as e:
            raise CredentialStoreError(
                "Credential file cannot be decrypted",
                error_code=ErrorCode.STORAGE_CORRUPTED,
                cause=e
            )
        return json.loads(decrypted)

    def _save_all(self, values: Dict[str, str]) -> None:
        if not values:
            if self.storage_path.exists():
                self.storage_path.unlink()
            return

        fernet = Fernet(self._get_encryption_key())
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_path.with_suffix('.tmp')
        tmp_path.write_bytes(fernet.encrypt(json.dumps(values).encode()))
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self.storage_path)

    def get(self, key: str) -> Optional[str]:
        try:
            with self._lock:
                return self._load_all().get(key)
        except Exception as e:
            logger.warning(f"Failed to read credential file: {e}")
            return None

    def set(self, key: str, value: str) -> bool:
        try:
            with self._lock:
                try:
                    values = self._load_all()
                except CredentialStoreError as e:
                    logger.warning(f"Discarding unreadable credential file: {e}")
                    values = {}
                values[key] = value
                self._save_all(values)
            return True
        except Exception as e:
            logger.error(f"Failed to write credential file: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            with self._lock:
                values = self._load_all()
                if key in values:
                    del values[key]
                    self._save_all(values)
            return True
        except Exception as e:
            logger.warning(f"Failed to remove '{key}' from credential file: {e}")
            return False


class SecureCredentialStore(ICredentialStore):
    """
    Platform-agnostic credential store.

    Uses the system keyring when available and falls back to encrypted file
    storage otherwise. The backend is chosen once at construction.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME, storage_path: Optional[Path] = None,
                 backend: str = "auto"):
        self.service_name = service_name

        if backend == "auto":
            backend = "keyring" if keyring_available(service_name) else "file"

        if backend == "keyring":
            self._backend: ICredentialStore = KeyringCredentialStore(service_name)
        elif backend == "file":
            self._backend = EncryptedFileCredentialStore(storage_path, service_name)
        elif backend == "memory":
            self._backend = MemoryCredentialStore()
        else:
            raise ValueError(f"Unknown credential store backend: {backend}")

        self.backend_name = backend
        logger.info(f"Credential store initialized (backend: {backend})")

    def get(self, key: str) -> Optional[str]:
        return self._backend.get(key)

    def set(self, key: str, value: str) -> bool:
        return self._backend.set(key, value)

    def delete(self, key: str) -> bool:
        return self._backend.delete(key)


def save_session(store: ICredentialStore, session: Session) -> bool:
    """
    Persist a whole session. Returns False if any key failed to write.

    Writes run back to back with no suspension point, so a reader on the same
    event loop sees either the previous session or this one.
    """
    results = [
        store.set(ACCESS_TOKEN_KEY, session.access_token),
        store.set(REFRESH_TOKEN_KEY, session.refresh_token),
        store.set(USER_KEY, json.dumps(session.user.to_dict())),
    ]
    if session.expires_at:
        results.append(store.set(EXPIRES_AT_KEY, session.expires_at.isoformat()))
    else:
        results.append(store.delete(EXPIRES_AT_KEY))
    return all(results)


def load_session(store: ICredentialStore) -> Optional[Session]:
    """
    Read a complete session from the store.

    Returns None when any required part is missing or unreadable; a partial
    session is never returned.
    """
    access_token = store.get(ACCESS_TOKEN_KEY)
    refresh_token = store.get(REFRESH_TOKEN_KEY)
    user_json = store.get(USER_KEY)

    if not access_token or not refresh_token or not user_json:
        return None

    try:
        user = User.from_api(json.loads(user_json))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Stored user profile is unreadable: {e}")
        return None

    expires_at = None
    expires_at_str = store.get(EXPIRES_AT_KEY)
    if expires_at_str:
        try:
            expires_at = datetime.fromisoformat(expires_at_str)
        except ValueError:
            logger.warning("Invalid expiration date in stored session")

    return Session(
        user=user,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at
    )


def clear_session(store: ICredentialStore) -> bool:
    """Remove every session key. Returns False if any delete failed."""
    return all([store.delete(key) for key in SESSION_KEYS])
