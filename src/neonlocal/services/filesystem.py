"""Filesystem helpers for neonlocal."""

import json
import logging
import os
import sys
import tempfile
from typing import Any, Dict, Optional

from rich.console import Console

from neonlocal.errors import ProxyError


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: str, mode: Optional[int] = None):
        if not os.path.isdir(path):
            os.makedirs(path, exist_ok=True)
            self.logger.debug("Created directory: %s", path)
            if mode is not None:
                self.set_permissions(path, mode)

    def remove_file(self, path: str) -> bool:
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        self.logger.debug("Removed file: %s", path)
        return True

    def read_json(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise ProxyError(f"Could not read file '{path}': {exc}") from exc

        if not isinstance(data, dict):
            raise ProxyError(f"File '{path}' has invalid format.")
        return data

    def write_json(self, path: str, data: Dict[str, Any], mode: Optional[int] = None):
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
        try:
            if mode is not None:
                self.set_permissions(temp_path, mode)
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(data, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, path)
        except OSError as exc:
            raise ProxyError(f"Could not write file '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
