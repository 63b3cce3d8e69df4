"""Background polling of the remote host."""

import logging
import threading

from sshtop.exceptions import SampleError
from sshtop.sampler import Sampler
from sshtop.state import ConnectRequest, SessionState

logger = logging.getLogger(__name__)

DEFAULT_POLL_RATE = 2.0


class PollingLoop:
    """
    Drives a Sampler for one connection attempt.

    Runs in a daemon thread. The first fetch decides the attempt: success
    moves the session to Monitoring, failure sends it back to the credential
    form with the error. After that it fetches every ``poll_rate`` seconds
    until the session leaves Monitoring, the generation moves on, or stop is
    requested. Network I/O is always done without the state lock.
    """

    def __init__(
        self,
        state: SessionState,
        sampler: Sampler,
        request: ConnectRequest,
        poll_rate: float = DEFAULT_POLL_RATE,
    ) -> None:
        """
        Initialize the PollingLoop.

        Args:
            state: Shared session state to publish into.
            sampler: Sampler owned by this loop; closed when the loop ends.
            request: Generation and credentials from the submit that started it.
            poll_rate: Seconds between background fetches. Default 2.0s.
        """
        self._state = state
        self._sampler = sampler
        self._request = request
        self._poll_rate = poll_rate
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0
        self.failures = 0

    @property
    def generation(self) -> int:
        return self._request.generation

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the polling thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the polling thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"PollingLoop-{self.generation}",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Ask the loop to stop and wait for it.

        A fetch already in flight is not interrupted; its result is dropped
        by the generation check.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if not self._thread.is_alive():
                self._thread = None

    def _run(self) -> None:
        try:
            if self._connect():
                self._poll_loop()
        finally:
            self._sampler.close()
            logger.debug("Polling loop for generation %d finished", self.generation)

    def _connect(self) -> bool:
        """Initial fetch; True when the session entered Monitoring."""
        credentials = self._request.credentials
        try:
            batch = self._sampler.fetch(credentials)
        except SampleError as e:
            logger.warning("Connection to %s failed: %s", credentials.host, e)
            self._state.fail_initial(self.generation, f"Connection failed: {e}")
            return False
        except Exception as e:
            logger.exception("Unexpected error connecting to %s", credentials.host)
            self._state.fail_initial(self.generation, f"Connection failed: {e}")
            return False

        if not self._state.commit_initial(self.generation, batch):
            logger.info("Discarding initial result for stale generation %d", self.generation)
            return False
        logger.info("Monitoring %s (%d users)", credentials.host, len(batch.users))
        return True

    def _poll_loop(self) -> None:
        """Background cadence after a successful connect."""
        # Wait for poll_rate seconds or until stop is requested
        while not self._stop_event.wait(timeout=self._poll_rate):
            if not self._state.should_continue(self.generation):
                break
            if not self._tick():
                break

    def _tick(self) -> bool:
        """One background fetch; False once the session has moved on."""
        self.ticks += 1
        try:
            batch = self._sampler.fetch(self._request.credentials)
        except SampleError as e:
            self.failures += 1
            logger.warning("Error fetching stats from %s: %s", self._request.credentials.host, e)
            return True
        except Exception:
            # Keep monitoring through unexpected errors
            self.failures += 1
            logger.exception("Unexpected error fetching stats")
            return True

        return self._state.merge(self.generation, batch)
