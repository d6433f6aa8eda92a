"""Log-based readiness detection for the proxy container."""

import time
from typing import Callable

from neonlocal.constants import (
    BRANCH_LIMIT_MARKER,
    BRANCH_LIMIT_URL_FRAGMENT,
    GENERIC_ERROR_MARKERS,
    READY_MARKER,
)
from neonlocal.errors import (
    BranchLimitExceeded,
    GenericContainerFailure,
    ProxyError,
    ReadinessTimeout,
)
from neonlocal.errors_catalog import actionable_error
from neonlocal.models import FailureReason, ReadinessResult, ReadinessStatus


def classify(running: bool, logs: str) -> ReadinessResult:
    """Maps one container snapshot to a readiness result.

    Rule order matters: a branch-limit failure must not be reported as a generic
    error, and an error line must win over a ready marker in the same tail.
    """
    if not running:
        return ReadinessResult(ReadinessStatus.NOT_RUNNING)

    if BRANCH_LIMIT_MARKER in logs and BRANCH_LIMIT_URL_FRAGMENT in logs:
        return ReadinessResult(ReadinessStatus.FAILED, FailureReason.BRANCH_LIMIT, logs)

    if any(marker in logs for marker in GENERIC_ERROR_MARKERS):
        return ReadinessResult(ReadinessStatus.FAILED, FailureReason.GENERIC, logs)

    if READY_MARKER in logs:
        return ReadinessResult(ReadinessStatus.READY)

    return ReadinessResult(ReadinessStatus.STARTING)


class ReadinessWatcher:
    """Polls container state and log tail until the proxy is ready or failed."""

    LOG_TAIL = 50
    READY_CHECK_TAIL = 100

    def __init__(
        self,
        runtime,
        container_name: str,
        logger,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runtime = runtime
        self.container_name = container_name
        self.logger = logger
        self.sleep = sleep

    def check(self) -> ReadinessResult:
        try:
            if not self.runtime.is_running(self.container_name):
                return ReadinessResult(ReadinessStatus.NOT_RUNNING)
            logs = self.runtime.logs(self.container_name, tail=self.LOG_TAIL)
        except ProxyError as exc:
            self.logger.debug("Readiness check failed, retrying: %s", exc)
            return ReadinessResult(ReadinessStatus.NOT_RUNNING, detail=str(exc))
        return classify(True, logs)

    def wait(self, timeout: float = 30.0, interval: float = 1.0) -> ReadinessResult:
        # One poll at each interval boundary, the last one at the deadline itself.
        max_sleeps = max(1, int(round(timeout / interval))) if interval > 0 else 0

        for attempt in range(max_sleeps + 1):
            result = self.check()

            if result.status == ReadinessStatus.READY:
                self.logger.info("Proxy container is ready.")
                return result

            if result.status == ReadinessStatus.FAILED:
                self.logger.error("Container reported an error in logs:\n%s", result.detail)
                if result.reason == FailureReason.BRANCH_LIMIT:
                    raise BranchLimitExceeded(actionable_error("branch_limit"))
                raise GenericContainerFailure(
                    actionable_error("container_error", container_name=self.container_name)
                )

            if result.status == ReadinessStatus.STARTING:
                self.logger.debug("Container running, waiting for ready message...")
            else:
                self.logger.debug(
                    "Container not running yet (attempt %s/%s).", attempt + 1, max_sleeps + 1
                )

            if attempt < max_sleeps:
                self.sleep(interval)

        raise ReadinessTimeout(
            actionable_error(
                "readiness_timeout",
                timeout=f"{timeout:g}",
                container_name=self.container_name,
            )
        )

    def is_ready(self) -> bool:
        try:
            logs = self.runtime.logs(self.container_name, tail=self.READY_CHECK_TAIL)
        except ProxyError as exc:
            self.logger.debug("Could not read container logs: %s", exc)
            return False
        return READY_MARKER in logs
