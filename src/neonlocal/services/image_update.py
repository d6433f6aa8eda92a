"""Once-a-day proxy image update check."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from neonlocal.constants import IMAGE_CHECK_INTERVAL_HOURS
from neonlocal.errors import ProxyError, PullError
from neonlocal.errors_catalog import actionable_error
from neonlocal.models import ImageUpdateResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageUpdateChecker:
    """Decides whether to re-pull the proxy image and reports digest changes."""

    LAST_CHECK_KEY = "last_checked_at"
    DIGEST_KEY = "digest"

    def __init__(
        self,
        image: str,
        runtime,
        registry_credentials,
        state_service,
        logger,
        console,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.image = image
        self.runtime = runtime
        self.registry_credentials = registry_credentials
        self.state_service = state_service
        self.logger = logger
        self.console = console
        self.now = now

    def should_check_today(self) -> bool:
        last_check = self.state_service.get_image_value(self.LAST_CHECK_KEY)
        if not last_check:
            return True

        try:
            last_check_at = datetime.fromisoformat(last_check)
        except (TypeError, ValueError):
            self.logger.debug("Ignoring malformed image check timestamp: %r", last_check)
            return True
        if last_check_at.tzinfo is None:
            last_check_at = last_check_at.replace(tzinfo=timezone.utc)

        return self.now() - last_check_at >= timedelta(hours=IMAGE_CHECK_INTERVAL_HOURS)

    def mark_checked(self):
        self.state_service.set_image_value(self.LAST_CHECK_KEY, self.now().isoformat())

    def check_and_maybe_update(self) -> ImageUpdateResult:
        local_digest = self.runtime.image_digest(self.image)

        if local_digest is None:
            self.logger.info("Proxy image %s not found locally, pulling.", self.image)
            return self._initial_pull()

        if not self.should_check_today():
            self.logger.debug("Image update already checked in the last 24 hours.")
            return ImageUpdateResult(local_digest=local_digest)

        self.console.print("[blue]Checking for proxy container updates...[/blue]")
        try:
            result = self._pull_and_compare(local_digest)
        except ProxyError as exc:
            self.logger.warning("Failed to check for image updates: %s", exc)
            result = ImageUpdateResult(local_digest=local_digest)
        finally:
            self.mark_checked()

        if result.updated:
            self.console.print("[green]Proxy container updated to latest version.[/green]")
        else:
            self.logger.info("Proxy container is up to date.")
        return result

    def _initial_pull(self) -> ImageUpdateResult:
        try:
            self.runtime.pull_image(self.image, self.registry_credentials.resolve())
        except PullError as exc:
            message = actionable_error("image_pull_failed", image=self.image)
            raise PullError(f"{message} {exc}") from exc

        new_digest = self.runtime.image_digest(self.image)
        self._remember_digest(new_digest)
        return ImageUpdateResult(pulled=True, new_digest=new_digest)

    def _pull_and_compare(self, local_digest: str) -> ImageUpdateResult:
        previous_digest = local_digest or self.state_service.get_image_value(self.DIGEST_KEY)
        self.runtime.pull_image(self.image, self.registry_credentials.resolve())
        new_digest = self.runtime.image_digest(self.image)
        self._remember_digest(new_digest)

        updated = bool(new_digest) and new_digest != previous_digest
        self.logger.debug("Image digest before %s, after %s", previous_digest, new_digest)
        return ImageUpdateResult(
            pulled=True,
            updated=updated,
            local_digest=local_digest,
            new_digest=new_digest,
        )

    def _remember_digest(self, digest: Optional[str]):
        if digest:
            self.state_service.set_image_value(self.DIGEST_KEY, digest)
