"""Machine-wide settings for REELCAST, kept in a small SQLite file.

Values listed in ``SettingsStore.SENSITIVE_KEYS`` (the provider API key) are
stored Fernet-encrypted. The key is derived from a random salt kept in the
same table and an identifier of the current machine, so a copied database
does not reveal the secret elsewhere.
"""
import base64
import hashlib
import json
import os
import platform
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

from infrastructure.logger import get_logger

logger = get_logger(__name__)

API_KEY_ENV = "GEMINI_API_KEY"
API_KEY_SETTING = "gemini_api_key"
SALT_KEY = "_encryption_salt"
KDF_ROUNDS = 100000

_UPSERT = """
    INSERT INTO settings (key, value, encrypted) VALUES (?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET value = excluded.value, encrypted = excluded.encrypted
"""


def _default_db_path() -> str:
    home = os.path.join(os.path.expanduser("~"), ".reelcast")
    os.makedirs(home, exist_ok=True)
    return os.path.join(home, "reelcast-settings.db")


def _get_machine_id() -> str:
    # Stable per host; not a secret.
    return "-".join((platform.node(), platform.system(), platform.machine()))


class SettingsStore:
    """Key/value settings with transparent encryption of sensitive keys.

    Keys starting with ``_`` are internal and never returned by ``get`` or
    ``get_all``.
    """

    SENSITIVE_KEYS = {API_KEY_SETTING}

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or _default_db_path()
        self._fernet: Optional[Fernet] = None
        with self._connection() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS settings ("
                "key TEXT PRIMARY KEY, value TEXT, encrypted INTEGER DEFAULT 0)"
            )

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # --- encryption ---

    def _salt(self) -> bytes:
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (SALT_KEY,)).fetchone()
            if row:
                return base64.b64decode(row[0])
            salt = os.urandom(16)
            conn.execute(_UPSERT, (SALT_KEY, base64.b64encode(salt).decode("utf-8"), 0))
        logger.info("Created new encryption salt")
        return salt

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            derived = hashlib.pbkdf2_hmac(
                "sha256", _get_machine_id().encode("utf-8"), self._salt(), KDF_ROUNDS, dklen=32
            )
            self._fernet = Fernet(base64.urlsafe_b64encode(derived))
        return self._fernet

    def _encode(self, key: str, value: str) -> Tuple[str, int]:
        if key in self.SENSITIVE_KEYS and value:
            token = self._cipher().encrypt(value.encode("utf-8"))
            return base64.b64encode(token).decode("utf-8"), 1
        return value, 0

    def _reveal(self, value: str, encrypted: int) -> Optional[str]:
        """Plain value, or None when an encrypted value cannot be decrypted here."""
        if not encrypted:
            return value
        try:
            return self._cipher().decrypt(base64.b64decode(value)).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Failed to decrypt value: {e}")
            return None

    # --- plain access ---

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if key.startswith("_"):
            return default
        with self._connection() as conn:
            row = conn.execute("SELECT value, encrypted FROM settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        revealed = self._reveal(*row)
        return default if revealed is None else revealed

    def set(self, key: str, value: str) -> None:
        stored, encrypted = self._encode(key, value)
        with self._connection() as conn:
            conn.execute(_UPSERT, (key, stored, encrypted))
        logger.debug(f"Setting saved: {key}" + (" (encrypted)" if encrypted else f" = {value}"))

    def delete(self, key: str) -> bool:
        with self._connection() as conn:
            return conn.execute("DELETE FROM settings WHERE key = ?", (key,)).rowcount > 0

    def get_all(self) -> Dict[str, str]:
        """Every public setting; undecryptable values are left out."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT key, value, encrypted FROM settings WHERE key NOT LIKE '\\_%' ESCAPE '\\'"
            ).fetchall()
        settings = {}
        for key, value, encrypted in rows:
            revealed = self._reveal(value, encrypted)
            if revealed is not None:
                settings[key] = revealed
        return settings

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    # --- provider credentials ---

    def get_provider_api_key(self) -> Optional[str]:
        """Stored key first, then the GEMINI_API_KEY environment variable."""
        return self.get(API_KEY_SETTING) or os.environ.get(API_KEY_ENV) or None

    def set_provider_api_key(self, api_key: str) -> None:
        self.set(API_KEY_SETTING, api_key.strip())
        logger.info("Provider API key saved")


_settings_store: Optional[SettingsStore] = None


def get_settings_store() -> SettingsStore:
    """Process-wide SettingsStore on the default database."""
    global _settings_store
    if _settings_store is None:
        _settings_store = SettingsStore()
    return _settings_store


__all__ = ["SettingsStore", "get_settings_store", "API_KEY_ENV"]
