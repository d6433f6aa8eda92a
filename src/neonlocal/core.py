import logging
import threading
import time
from typing import Callable, Optional

from rich.console import Console

from .errors import (
    BranchLimitExceeded,
    ContainerNotFound,
    ProxyError,
    StartCancelled,
)
from .models import (
    ContainerInfo,
    ContainerSpec,
    ContainerState,
    ProxySettings,
    ProxyStatus,
    StartResult,
    connection_string,
    credential_token,
    normalize_driver,
)
from .services.command_runner import CommandRunner
from .services.credentials import CredentialResolver, RegistryCredentialStore
from .services.docker_runtime import DockerRuntimeService
from .services.filesystem import FileSystemService
from .services.handoff import BranchHandoffChannel
from .services.image_update import ImageUpdateChecker
from .services.oauth import OAuthTokenRefresher
from .services.readiness import ReadinessWatcher
from .services.secrets import SecretStore
from .services.start_guard import StartGuard
from .services.state import ProxyStateService
from .services.status_monitor import StatusMonitor

console = Console()
logger = logging.getLogger("neonlocal")


class ContainerLifecycleManager:
    """Starts, watches and tears down the singleton Neon Local proxy container.

    Build one instance at process start and hand it to every consumer. The
    container name is a single slot, so starts are also serialized across
    processes through a lock file in the data directory, and a ``stop`` from
    another process cancels a start that holds it.
    """

    def __init__(
        self,
        settings: Optional[ProxySettings] = None,
        runtime: Optional[DockerRuntimeService] = None,
        credentials: Optional[CredentialResolver] = None,
        image_checker: Optional[ImageUpdateChecker] = None,
        state_service: Optional[ProxyStateService] = None,
        filesystem: Optional[FileSystemService] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_death: Optional[Callable[[], None]] = None,
        start_guard: Optional[StartGuard] = None,
    ):
        self.settings = settings or ProxySettings()
        self.container_name = self.settings.container_name

        self.filesystem = filesystem or FileSystemService(logger=logger, console=console)
        self.command_runner = CommandRunner(
            logger=logger, default_timeout=self.settings.command_timeout
        )
        self.runtime = runtime or DockerRuntimeService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
        )
        self.state_service = state_service or ProxyStateService(
            state_file=self.settings.state_file,
            filesystem=self.filesystem,
            logger=logger,
        )
        self.secret_store = SecretStore(
            secrets_file=self.settings.secrets_file,
            filesystem=self.filesystem,
            logger=logger,
        )
        self.credentials = credentials or CredentialResolver(
            secret_store=self.secret_store,
            refresher=OAuthTokenRefresher(
                oauth_host=self.settings.oauth_host,
                client_id=self.settings.oauth_client_id,
                logger=logger,
            ),
            logger=logger,
        )
        self.image_checker = image_checker or ImageUpdateChecker(
            image=self.settings.image,
            runtime=self.runtime,
            registry_credentials=RegistryCredentialStore(
                command_runner=self.command_runner, logger=logger
            ),
            state_service=self.state_service,
            logger=logger,
            console=console,
        )

        self.start_guard = start_guard or StartGuard(
            data_dir=self.settings.resolved_data_dir,
            filesystem=self.filesystem,
            logger=logger,
            stale_after=self.settings.start_lock_timeout,
        )

        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._wait = sleep or self._cancel.wait
        self._pause = sleep or time.sleep

        self.handoff = BranchHandoffChannel(
            handoff_dir=self.settings.handoff_dir,
            filesystem=self.filesystem,
            logger=logger,
            sleep=self._interruptible_sleep,
        )
        self.readiness = ReadinessWatcher(
            runtime=self.runtime,
            container_name=self.container_name,
            logger=logger,
            sleep=self._interruptible_sleep,
        )
        self.status_monitor = StatusMonitor(
            runtime=self.runtime,
            container_name=self.container_name,
            state_service=self.state_service,
            handoff=self.handoff,
            logger=logger,
            interval=self.settings.status_interval,
            on_death=on_death,
        )

    def start(
        self,
        branch_id: str,
        driver: str,
        is_existing_branch: bool,
        project_id: str,
        port: int,
    ) -> StartResult:
        if not self._lock.acquire(blocking=False):
            raise ProxyError("A proxy start or stop is already in progress.")

        try:
            # Serializes starts issued from separate CLI processes.
            self.start_guard.acquire()
            try:
                self._cancel.clear()
                self.state_service.set_starting(True)
                try:
                    return self._start(branch_id, driver, is_existing_branch, project_id, port)
                finally:
                    self.state_service.set_starting(False)
            finally:
                self.start_guard.release()
        finally:
            self._lock.release()

    def stop(self):
        # Interrupts a start() blocked in one of its polling loops.
        self._cancel.set()
        with self._lock:
            try:
                self._cancel_foreign_start()
                self._stop()
            finally:
                self._cancel.clear()

    def cleanup(self):
        """Force-removes the container after a failed start."""
        with self._lock:
            self._cleanup()

    def is_running(self) -> bool:
        try:
            return self.runtime.is_running(self.container_name)
        except ProxyError as exc:
            logger.debug("Could not determine container status: %s", exc)
            return False

    def get_container_info(self) -> ContainerInfo:
        env = self.runtime.container_env(self.container_name)

        branch_id = env.get("BRANCH_ID") or env.get("PARENT_BRANCH_ID") or ""
        project_id = env.get("NEON_PROJECT_ID") or ""
        if not branch_id or not project_id:
            raise ContainerNotFound(
                f"Container {self.container_name} is missing required environment variables."
            )

        return ContainerInfo(
            branch_id=branch_id,
            project_id=project_id,
            driver=normalize_driver(env.get("DRIVER")),
            is_parent_branch=bool(env.get("PARENT_BRANCH_ID")),
        )

    def get_current_driver(self) -> str:
        try:
            return self.get_container_info().driver
        except ProxyError as exc:
            logger.debug("Falling back to default driver: %s", exc)
            return normalize_driver(None)

    def status(self) -> ProxyStatus:
        state = self.runtime.container_state(self.container_name)
        if state != ContainerState.RUNNING:
            return ProxyStatus(state=state)

        try:
            info: Optional[ContainerInfo] = self.get_container_info()
        except ContainerNotFound:
            info = None
        return ProxyStatus(state=state, ready=self.readiness.is_ready(), info=info)

    def restore(self, monitor: bool = True) -> Optional[ContainerInfo]:
        """Reconciles persisted state with a container that outlived this process.

        With ``monitor=False`` the state is reconciled without starting the
        background status monitor, for one-shot commands such as ``status``.
        """
        if self.start_guard.held_by_other():
            logger.debug("A start is in progress elsewhere, leaving persisted state alone.")
            return None

        if not self.is_running():
            self.state_service.set_proxy_running(False)
            self.handoff.delete()
            return None

        info = self.get_container_info()
        self.state_service.update(
            is_proxy_running=True,
            currently_connected_branch=self.handoff.read() or info.branch_id,
        )
        if monitor:
            self.status_monitor.start()
            logger.info("Reattached to running proxy container on branch %s", info.branch_id)
        return info

    def _start(
        self,
        branch_id: str,
        driver: str,
        is_existing_branch: bool,
        project_id: str,
        port: int,
    ) -> StartResult:
        logger.debug(
            "Starting proxy: branch=%s project=%s driver=%s existing=%s port=%s",
            branch_id,
            project_id,
            driver,
            is_existing_branch,
            port,
        )
        self.handoff.ensure_directory()

        credential = self.credentials.resolve(is_existing_branch)
        image_updated = self._check_image()

        spec = ContainerSpec.build(
            settings=self.settings,
            token=credential_token(credential),
            branch_id=branch_id,
            project_id=project_id,
            driver=driver,
            is_existing_branch=is_existing_branch,
            port=port,
        )
        self.state_service.set_selection(
            branch_id=branch_id,
            project_id=project_id,
            driver=spec.env["DRIVER"],
            connection_type="existing" if is_existing_branch else "new",
            port=spec.host_port,
        )

        self._raise_if_cancelled()
        self._remove_existing()
        self._raise_if_cancelled()

        console.print(f"[blue]Starting proxy container {spec.name}...[/blue]")
        self.runtime.create_container(spec)
        self.runtime.start_container(spec.name)
        connection_info = connection_string(spec.host_port)
        self.state_service.set_connection_info(connection_info)

        try:
            with console.status("[bold magenta]Waiting for the proxy to become ready..."):
                self.readiness.wait(
                    timeout=self.settings.readiness_timeout,
                    interval=self.settings.poll_interval,
                )

            if is_existing_branch:
                effective_branch = self.handoff.read() or branch_id
            else:
                with console.status("[bold magenta]Waiting for ephemeral branch to be created..."):
                    effective_branch = self.handoff.wait_for(
                        timeout=self.settings.handoff_timeout,
                        interval=self.settings.poll_interval,
                    )
        except BranchLimitExceeded:
            self.state_service.set_connection_info("")
            if self.settings.cleanup_on_branch_limit:
                logger.info("Branch limit reached, removing proxy container.")
                try:
                    self._cleanup()
                except ProxyError as cleanup_exc:
                    logger.warning("Could not remove proxy container: %s", cleanup_exc)
            else:
                logger.info(
                    "Branch limit reached; container %s left in place for inspection.",
                    spec.name,
                )
            raise
        except ProxyError:
            self.state_service.set_connection_info("")
            raise

        self.state_service.update(
            currently_connected_branch=effective_branch,
            is_proxy_running=True,
        )
        self.status_monitor.start()

        console.print(f"[green]Proxy is ready on branch {effective_branch}.[/green]")
        logger.info("Proxy container started: %s", connection_info)
        return StartResult(
            branch_id=effective_branch,
            connection_string=connection_info,
            image_updated=image_updated,
        )

    def _check_image(self) -> bool:
        try:
            return self.image_checker.check_and_maybe_update().updated
        except ProxyError as exc:
            logger.warning("Skipping image update check: %s", exc)
            return False

    def _remove_existing(self):
        try:
            existing = self.runtime.find_container_id(self.container_name)
        except ProxyError as exc:
            logger.warning("Error checking for existing container: %s", exc)
            existing = None

        if existing:
            try:
                self.runtime.stop_container(existing, self.settings.stop_timeout)
            except ProxyError as exc:
                logger.debug("Existing container did not stop cleanly: %s", exc)
            try:
                self.runtime.remove_container(existing, force=True)
            except ContainerNotFound:
                pass
            logger.debug("Removed existing container: %s", self.container_name)

        self.handoff.delete()

    def _stop(self):
        self.status_monitor.stop()
        try:
            self.runtime.stop_container(self.container_name, self.settings.stop_timeout)
            self.runtime.remove_container(self.container_name)
        except ContainerNotFound:
            logger.debug("Container %s does not exist, nothing to stop.", self.container_name)
        finally:
            self.handoff.delete()

        self.state_service.clear_connection()
        console.print("[green]Proxy container stopped.[/green]")
        logger.info("Proxy container stopped.")

    def _cleanup(self):
        try:
            # rm -f also takes down a container that refused to stop.
            self.runtime.remove_container(self.container_name, force=True)
        except ContainerNotFound:
            logger.debug("Container does not exist, no cleanup needed.")
        finally:
            self.handoff.delete()

    def _cancel_foreign_start(self):
        holder = self.start_guard.holder()
        if holder is None or holder.get("token") == self.start_guard.token:
            return

        logger.info("Cancelling proxy start in progress (pid %s).", holder.get("pid"))
        self.start_guard.request_cancel()
        released = self.start_guard.wait_released(
            timeout=self.settings.stop_timeout,
            interval=min(self.settings.poll_interval, 0.5),
            sleep=self._pause,
        )
        if not released:
            logger.warning("Proxy start did not acknowledge the stop request; stopping anyway.")

    def _raise_if_cancelled(self):
        if self._cancel.is_set() or self.start_guard.cancel_requested():
            raise StartCancelled("Proxy start was cancelled by a stop request.")

    def _interruptible_sleep(self, seconds: float):
        self._raise_if_cancelled()
        self._wait(seconds)
        self._raise_if_cancelled()

