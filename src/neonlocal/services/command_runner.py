"""Subprocess execution service for neonlocal."""

import os
import subprocess
from typing import Dict, Iterator, List, Optional

from neonlocal.errors import ProxyError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        extra_env: Optional[Dict[str, str]] = None,
        log_output: bool = True,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                input=input_text,
                env=self._build_env(extra_env),
            )
        except FileNotFoundError as exc:
            raise ProxyError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProxyError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except Exception as exc:
            raise ProxyError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and log_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise ProxyError(message)

        self.logger.debug(message)
        return result

    def stream(self, cmd: List[str], extra_env: Optional[Dict[str, str]] = None) -> Iterator[str]:
        """Yields non-empty output lines; raises ProxyError on a non-zero exit."""
        cmd_str = " ".join(cmd)
        self.logger.debug("Streaming: %s", cmd_str)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                env=self._build_env(extra_env),
            )
        except FileNotFoundError as exc:
            raise ProxyError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except Exception as exc:
            raise ProxyError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        last_line = ""
        try:
            for line in process.stdout:
                cleaned = line.rstrip()
                if not cleaned:
                    continue
                last_line = cleaned
                yield cleaned
        finally:
            process.stdout.close()
            returncode = process.wait()

        if returncode != 0:
            message = f"Command failed ({returncode}): {cmd_str}"
            if last_line:
                message = f"{message}\n{last_line}"
            raise ProxyError(message)

    @staticmethod
    def _build_env(extra_env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not extra_env:
            return None
        env = dict(os.environ)
        env.update(extra_env)
        return env
