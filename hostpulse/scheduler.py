from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import threading
from typing import Callable, Protocol

from hostpulse.config import EngineConfig
from hostpulse.engine import MonitorEngine
from hostpulse.errors import FetchFailure, TransportFormatError, classify_exception
from hostpulse.stats import DeviceSnapshot


class PollStatus(str, Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    RETRY_WAITING = "RetryWaiting"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]
FetchCallable = Callable[[], str]
SnapshotListener = Callable[[DeviceSnapshot], None]


def threading_timer(delay_s: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_s, callback)
    timer.daemon = True
    timer.start()
    return timer


@dataclass
class PollState:
    device: str
    fetch: FetchCallable
    status: PollStatus = PollStatus.IDLE
    retry_count: int = 0
    timer: TimerHandle | None = None
    cancelled: bool = False
    history: list[PollStatus] = field(default_factory=list)


class PollScheduler:
    """Drives fetch, parse and compute cycles for monitored devices.

    Each device has at most one fetch in flight. A failed fetch is retried
    ``max_retries`` times, ``retry_delay_ms`` apart, before the failure is
    written to the snapshot and normal polling resumes. Cancelling a device
    clears its timer and discards its counter state; results that arrive
    afterwards are dropped.
    """

    def __init__(
        self,
        engine: MonitorEngine,
        config: EngineConfig | None = None,
        timer_factory: TimerFactory = threading_timer,
    ) -> None:
        self.engine = engine
        self.config = config or engine.config
        self.timer_factory = timer_factory
        self._states: dict[str, PollState] = {}
        self._listeners: list[SnapshotListener] = []
        self._lock = threading.RLock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def select(self, device: str, fetch: FetchCallable) -> None:
        """Make ``device`` the only monitored device."""
        with self._lock:
            for other in list(self._states):
                if other != device:
                    self.stop(other)
            self.start(device, fetch)

    def start(self, device: str, fetch: FetchCallable) -> None:
        """Begin polling ``device`` with an immediate fetch."""
        with self._lock:
            if device in self._states:
                self.stop(device)
            state = PollState(device=device, fetch=fetch)
            state.history.append(PollStatus.IDLE)
            self._states[device] = state
            self.logger.info("Started polling %s.", device)
            self._schedule(state, 0)

    def stop(self, device: str) -> None:
        with self._lock:
            state = self._states.pop(device, None)
            if state is None:
                return
            state.cancelled = True
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            self.engine.discard(device)
            self.logger.info("Stopped polling %s.", device)

    def stop_all(self) -> None:
        with self._lock:
            for device in list(self._states):
                self.stop(device)

    def devices(self) -> list[str]:
        with self._lock:
            return list(self._states)

    def status(self, device: str) -> PollStatus | None:
        with self._lock:
            state = self._states.get(device)
            return state.status if state is not None else None

    def retry_count(self, device: str) -> int:
        with self._lock:
            state = self._states.get(device)
            return state.retry_count if state is not None else 0

    def history(self, device: str) -> list[PollStatus]:
        with self._lock:
            state = self._states.get(device)
            return list(state.history) if state is not None else []

    def fetching(self, device: str) -> bool:
        return self.status(device) is PollStatus.FETCHING

    def snapshot(self, device: str) -> DeviceSnapshot | None:
        return self.engine.snapshot(device)

    def _is_current(self, state: PollState) -> bool:
        return not state.cancelled and self._states.get(state.device) is state

    def _transition(self, state: PollState, status: PollStatus) -> None:
        self.logger.debug("%s: %s -> %s", state.device, state.status.value, status.value)
        state.status = status
        state.history.append(status)

    def _schedule(self, state: PollState, delay_ms: int) -> None:
        state.timer = self.timer_factory(delay_ms / 1000.0, lambda: self._run_cycle(state))

    def _run_cycle(self, state: PollState) -> None:
        with self._lock:
            if not self._is_current(state) or state.status is PollStatus.FETCHING:
                return
            state.timer = None
            self._transition(state, PollStatus.FETCHING)

        try:
            body = state.fetch()
            if not isinstance(body, str):
                raise TransportFormatError(f"Expected text body, got {type(body).__name__}")
        except Exception as exc:  # any collaborator failure feeds the retry loop
            self._on_failure(state, classify_exception(exc))
            return
        self._on_success(state, body)

    def _on_success(self, state: PollState, body: str) -> None:
        with self._lock:
            if not self._is_current(state):
                self.logger.debug("Discarding stale result for %s.", state.device)
                return
            snapshot = self.engine.ingest(state.device, body)
            state.retry_count = 0
            self._transition(state, PollStatus.IDLE)
            self._schedule(state, self.config.poll_interval_ms)
        self._notify(snapshot)

    def _on_failure(self, state: PollState, failure: FetchFailure) -> None:
        with self._lock:
            if not self._is_current(state):
                self.logger.debug("Discarding stale failure for %s.", state.device)
                return
            if state.retry_count < self.config.max_retries:
                state.retry_count += 1
                self.logger.info(
                    "Fetch from %s failed (%s); retry %s/%s in %s ms.",
                    state.device,
                    failure.describe(),
                    state.retry_count,
                    self.config.max_retries,
                    self.config.retry_delay_ms,
                )
                self._transition(state, PollStatus.RETRY_WAITING)
                self._schedule(state, self.config.retry_delay_ms)
                return
            self.logger.warning(
                "Fetch from %s failed after %s retries: %s",
                state.device,
                self.config.max_retries,
                failure.describe(),
            )
            snapshot = self.engine.fail(state.device, failure)
            state.retry_count = 0
            self._transition(state, PollStatus.IDLE)
            self._schedule(state, self.config.poll_interval_ms)
        self._notify(snapshot)

    def _notify(self, snapshot: DeviceSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("Snapshot listener failed for %s.", snapshot.device)
