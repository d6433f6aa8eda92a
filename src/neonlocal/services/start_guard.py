"""Cross-process guard that serializes proxy starts and lets a stop cancel one."""

import json
import os
import sys
import time
import uuid
from typing import Any, Callable, Dict, Optional

from neonlocal.errors import ProxyError


def _pid_alive(pid: int) -> bool:
    # os.kill(pid, 0) terminates the target on Windows; rely on lock age there.
    if sys.platform == "win32":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class StartGuard:
    """Lock file in the data directory held for the whole duration of a start.

    Every CLI command runs in its own process, so the lock lives on disk: it is
    created with ``O_EXCL`` and records the owner's pid, a per-instance token and
    the acquisition time. A lock whose process is gone, or that is older than
    ``stale_after`` seconds, is taken over.
    """

    LOCK_FILE_NAME = "start.lock"
    CANCEL_FILE_NAME = "start.cancel"
    PARTIAL_WRITE_GRACE = 5.0

    def __init__(
        self,
        data_dir: str,
        filesystem,
        logger,
        stale_after: float = 900.0,
        clock: Callable[[], float] = time.time,
        pid_alive: Callable[[int], bool] = _pid_alive,
    ):
        self.lock_path = os.path.join(data_dir, self.LOCK_FILE_NAME)
        self.cancel_path = os.path.join(data_dir, self.CANCEL_FILE_NAME)
        self.data_dir = data_dir
        self.filesystem = filesystem
        self.logger = logger
        self.stale_after = stale_after
        self.clock = clock
        self.pid_alive = pid_alive
        self.token = uuid.uuid4().hex
        self._owned = False

    @property
    def owned(self) -> bool:
        return self._owned

    def acquire(self):
        self.filesystem.ensure_dir(self.data_dir)

        for _ in range(2):
            if self._try_create():
                self._owned = True
                # A cancel left behind by an earlier stop must not abort this start.
                self.filesystem.remove_file(self.cancel_path)
                return

            holder = self.holder()
            if holder is not None:
                raise ProxyError(
                    "A proxy start is already in progress "
                    f"(pid {holder.get('pid')}). Wait for it or run `neonlocal stop`."
                )
            self.logger.info("Removing stale start lock %s", self.lock_path)
            self.filesystem.remove_file(self.lock_path)

        raise ProxyError(f"Could not acquire start lock {self.lock_path}.")

    def release(self):
        if not self._owned:
            return
        self._owned = False
        record = self._read()
        if record is not None and record.get("token") != self.token:
            self.logger.debug("Start lock was taken over, leaving it in place.")
            return
        self.filesystem.remove_file(self.lock_path)
        self.filesystem.remove_file(self.cancel_path)

    def holder(self) -> Optional[Dict[str, Any]]:
        """Returns the live lock record, or None when the lock is free or stale."""
        record = self._read()
        if record is None:
            return None
        if not record:
            # Another process may sit between creating the file and writing it.
            try:
                age = time.time() - os.path.getmtime(self.lock_path)
            except OSError:
                return None
            return {"pid": "unknown"} if age < self.PARTIAL_WRITE_GRACE else None

        try:
            pid = int(record.get("pid"))
            acquired_at = float(record.get("acquired_at"))
        except (TypeError, ValueError):
            self.logger.debug("Start lock %s is malformed.", self.lock_path)
            return None

        if self.clock() - acquired_at > self.stale_after:
            return None
        if not self.pid_alive(pid):
            return None
        return record

    def held_by_other(self) -> bool:
        holder = self.holder()
        return holder is not None and holder.get("token") != self.token

    def request_cancel(self):
        with open(self.cancel_path, "w", encoding="utf-8") as file_obj:
            file_obj.write(str(os.getpid()))
        self.logger.debug("Requested cancellation of the in-flight start.")

    def cancel_requested(self) -> bool:
        return self._owned and os.path.exists(self.cancel_path)

    def wait_released(
        self,
        timeout: float,
        interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        max_attempts = max(1, int(round(timeout / interval))) if interval > 0 else 1
        for _ in range(max_attempts):
            if not self.held_by_other():
                return True
            sleep(interval)
        return not self.held_by_other()

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        except OSError as exc:
            raise ProxyError(f"Could not create start lock {self.lock_path}: {exc}") from exc

        record = {"pid": os.getpid(), "token": self.token, "acquired_at": self.clock()}
        with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
            json.dump(record, file_obj)
        return True

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.lock_path, "r", encoding="utf-8") as file_obj:
                record = json.load(file_obj)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self.logger.debug("Could not read start lock %s: %s", self.lock_path, exc)
            return {}
        return record if isinstance(record, dict) else {}
