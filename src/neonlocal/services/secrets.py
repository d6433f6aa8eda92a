"""Local key-value store for API tokens."""

import threading
from typing import Dict, Optional

from neonlocal.constants import SECRET_FILE_MODE


class SecretStore:
    """Keeps tokens in a user-only readable JSON file.

    Other backends (an OS keyring, an editor's secret storage) only need to
    provide ``get``, ``set`` and ``delete`` with the same semantics.
    """

    PERSISTENT_API_TOKEN = "persistentApiToken"
    ACCESS_TOKEN = "apiKey"
    REFRESH_TOKEN = "refreshToken"
    EXPIRES_AT = "expiresAt"

    def __init__(self, secrets_file: str, filesystem, logger):
        self.secrets_file = secrets_file
        self.filesystem = filesystem
        self.logger = logger
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        return str(value) if value not in (None, "") else None

    def set(self, key: str, value: Optional[str]):
        with self._lock:
            data = self._load()
            if value in (None, ""):
                data.pop(key, None)
            else:
                data[key] = value
            self._save(data)

    def delete(self, *keys: str):
        with self._lock:
            data = self._load()
            removed = [key for key in keys if data.pop(key, None) is not None]
            if removed:
                self._save(data)
                self.logger.debug("Removed secrets: %s", ", ".join(removed))

    def _load(self) -> Dict[str, str]:
        return self.filesystem.read_json(self.secrets_file) or {}

    def _save(self, data: Dict[str, str]):
        self.filesystem.write_json(self.secrets_file, data, mode=SECRET_FILE_MODE)
