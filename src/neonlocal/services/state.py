"""Persisted proxy state shared with the connection views."""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from neonlocal.errors import ProxyError

_DEFAULT_STATE: Dict[str, Any] = {
    "is_proxy_running": False,
    "is_starting": False,
    "connection_info": "",
    "selected_database": "",
    "currently_connected_branch": "",
    "databases": [],
    "roles": [],
    "selection": {},
    "image": {},
}


class ProxyStateService:
    """Persists the "is the proxy usable" view of the world across sessions."""

    SCHEMA_VERSION = 1

    def __init__(self, state_file: str, filesystem, logger):
        self.state_file = state_file
        self.filesystem = filesystem
        self.logger = logger
        self._lock = threading.RLock()

    def load(self) -> Dict[str, Any]:
        with self._lock:
            try:
                data = self.filesystem.read_json(self.state_file)
            except ProxyError as exc:
                self.logger.warning("Ignoring unreadable state file: %s", exc)
                data = None

            state = {key: self._copy(value) for key, value in _DEFAULT_STATE.items()}
            if data:
                state.update(data)
            return state

    def update(self, **values: Any) -> Dict[str, Any]:
        with self._lock:
            state = self.load()
            state.update(values)
            state["schema_version"] = self.SCHEMA_VERSION
            state["updated_at"] = self._now()
            self.filesystem.write_json(self.state_file, state)
            return state

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def set_proxy_running(self, value: bool):
        self.update(is_proxy_running=value)

    def set_starting(self, value: bool):
        self.update(is_starting=value)

    def set_connection_info(self, connection_info: str, selected_database: str = ""):
        self.update(connection_info=connection_info, selected_database=selected_database)

    def set_selection(
        self,
        branch_id: str,
        project_id: str,
        driver: str,
        connection_type: str,
        port: int,
    ):
        self.update(
            selection={
                "branch_id": branch_id,
                "project_id": project_id,
                "driver": driver,
                "connection_type": connection_type,
                "port": port,
            }
        )

    def clear_connection(self):
        """Resets everything tied to a live proxy; the user's selection survives."""
        self.update(
            is_proxy_running=False,
            is_starting=False,
            connection_info="",
            selected_database="",
            currently_connected_branch="",
            databases=[],
            roles=[],
        )

    def get_image_value(self, key: str) -> Optional[str]:
        return (self.get("image") or {}).get(key)

    def set_image_value(self, key: str, value: Optional[str]):
        with self._lock:
            image = dict(self.get("image") or {})
            image[key] = value
            self.update(image=image)

    @staticmethod
    def _copy(value: Any) -> Any:
        if isinstance(value, dict):
            return dict(value)
        if isinstance(value, list):
            return list(value)
        return value

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
