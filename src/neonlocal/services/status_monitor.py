"""Background liveness polling for the running proxy container."""

import threading
from typing import Callable, Optional

from neonlocal.errors import ProxyError


class StatusMonitor:
    """Detects unexpected container death and clears the proxy state.

    Death is terminal: the monitor never restarts the container, it records the
    fact and stops itself.
    """

    def __init__(
        self,
        runtime,
        container_name: str,
        state_service,
        handoff,
        logger,
        interval: float = 5.0,
        on_death: Optional[Callable[[], None]] = None,
    ):
        self.runtime = runtime
        self.container_name = container_name
        self.state_service = state_service
        self.handoff = handoff
        self.logger = logger
        self.interval = interval
        self.on_death = on_death
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self):
        self.stop()
        with self._lock:
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop,
                args=(stop_event,),
                name="neonlocal-status-monitor",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        self.logger.debug("Status monitor started (every %.1fs).", self.interval)

    def stop(self):
        with self._lock:
            stop_event, thread = self._stop_event, self._thread
            self._stop_event = None
            self._thread = None

        if stop_event is None:
            return
        stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)
        self.logger.debug("Status monitor stopped.")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the monitor stops; returns False if the timeout elapsed first."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def run_once(self) -> bool:
        """Performs one liveness check; returns False once the container is gone."""
        try:
            running = self.runtime.is_running(self.container_name)
        except ProxyError as exc:
            self.logger.error("Error checking container status: %s", exc)
            return True

        if running:
            return True

        self.logger.warning("Proxy container is no longer running.")
        self.state_service.set_proxy_running(False)
        self.handoff.delete()
        if self.on_death is not None:
            self.on_death()
        return False

    def _loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.interval):
            if not self.run_once():
                stop_event.set()
                break
