"""File-based mailbox through which the proxy container reports its branch id."""

import json
import os
import time
from typing import Callable, Optional

from neonlocal.constants import DIR_MODE, HANDOFF_FILE_NAME
from neonlocal.errors import HandoffTimeout
from neonlocal.errors_catalog import actionable_error


class BranchHandoffChannel:
    """Reads the ``.branches`` file the container writes into the mounted directory.

    The container writes the file without any atomicity guarantee, so every read
    re-parses the whole document and treats a partial write as "not yet".
    """

    def __init__(
        self,
        handoff_dir: str,
        filesystem,
        logger,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.handoff_dir = handoff_dir
        self.path = os.path.join(handoff_dir, HANDOFF_FILE_NAME)
        self.filesystem = filesystem
        self.logger = logger
        self.sleep = sleep

    def ensure_directory(self):
        self.filesystem.ensure_dir(self.handoff_dir, mode=DIR_MODE)

    def read(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                content = file_obj.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            self.logger.debug("Could not read %s: %s", self.path, exc)
            return None

        if not content.strip():
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            self.logger.debug("Branch handoff file is not valid JSON yet.")
            return None

        if not isinstance(data, dict):
            return None

        for key, record in data.items():
            if isinstance(record, dict) and "branch_id" in record:
                branch_id = record.get("branch_id")
                if branch_id:
                    self.logger.debug("Found branch id %s under key %s", branch_id, key)
                    return str(branch_id)
        return None

    def wait_for(self, timeout: float = 30.0, interval: float = 1.0) -> str:
        max_sleeps = max(1, int(round(timeout / interval))) if interval > 0 else 0

        for attempt in range(max_sleeps + 1):
            branch_id = self.read()
            if branch_id:
                self.logger.debug("Branch handoff file populated after %s attempts.", attempt + 1)
                return branch_id
            if attempt < max_sleeps:
                self.sleep(interval)

        raise HandoffTimeout(actionable_error("handoff_timeout", timeout=f"{timeout:g}"))

    def delete(self) -> bool:
        return self.filesystem.remove_file(self.path)
