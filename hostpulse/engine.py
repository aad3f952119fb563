from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
import threading
import time
from typing import Callable

from hostpulse import exposition
from hostpulse.config import EngineConfig
from hostpulse.cores import CoreIndexer
from hostpulse.counters import CounterTracker
from hostpulse.errors import FetchFailure
from hostpulse.stats import DerivedStatsComputer, DeviceSnapshot, GaugeReadings

_COUNTER_FAMILIES = {
    exposition.CPU_TIME,
    exposition.CPU_PERFORMANCE,
    exposition.CPU_MPERF,
    exposition.NET_RECEIVED,
    exposition.NET_SENT,
}


@dataclass
class DeviceState:
    snapshot: DeviceSnapshot
    tracker: CounterTracker = field(default_factory=CounterTracker)
    lock: threading.RLock = field(default_factory=threading.RLock)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MonitorEngine:
    """Owns counter state and the latest snapshot for every monitored device."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock
        self.wall_clock = wall_clock
        self.computer = DerivedStatsComputer(CoreIndexer(self.config.threads_per_processor))
        self._devices: dict[str, DeviceState] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def devices(self) -> list[str]:
        with self._lock:
            return list(self._devices)

    def _state(self, device: str) -> DeviceState:
        with self._lock:
            state = self._devices.get(device)
            if state is None:
                state = DeviceState(snapshot=DeviceSnapshot(device=device))
                self._devices[device] = state
            return state

    def snapshot(self, device: str) -> DeviceSnapshot | None:
        with self._lock:
            state = self._devices.get(device)
        return state.snapshot if state is not None else None

    def discard(self, device: str) -> None:
        with self._lock:
            state = self._devices.pop(device, None)
        if state is not None:
            with state.lock:
                state.tracker.discard()
            self.logger.debug("Discarded counter state for %s.", device)

    def ingest(self, device: str, text: str) -> DeviceSnapshot:
        """Parse one exposition body and replace the device snapshot."""
        state = self._state(device)
        with state.lock:
            cycle_timestamp = self.clock()
            gauges = GaugeReadings()
            count = 0
            for sample in exposition.parse_exposition(text):
                count += 1
                self._route(state.tracker, gauges, sample, cycle_timestamp)
            if count == 0:
                self.logger.warning("No recognized metrics in response from %s.", device)
            else:
                self.logger.debug("Parsed %s samples from %s.", count, device)
            state.snapshot = self.computer.compute(
                state.snapshot,
                state.tracker,
                gauges,
                cycle_timestamp,
                timestamp=self.wall_clock(),
            )
            return state.snapshot

    def fail(self, device: str, failure: FetchFailure) -> DeviceSnapshot:
        state = self._state(device)
        with state.lock:
            state.snapshot = self.computer.apply_failure(
                state.snapshot, failure, timestamp=self.wall_clock()
            )
            return state.snapshot

    def _route(
        self,
        tracker: CounterTracker,
        gauges: GaugeReadings,
        sample: exposition.MetricSample,
        cycle_timestamp: float,
    ) -> None:
        family = sample.family
        if family in _COUNTER_FAMILIES:
            tracker.observe(family, sample.labels, sample.value, cycle_timestamp)
            if family == exposition.CPU_TIME:
                gauges.see_core(sample.label("core"))
        elif family == exposition.LOGICAL_PROCESSORS:
            if math.isfinite(sample.value) and sample.value > 0:
                gauges.logical_processors = int(sample.value)
        elif family == exposition.CORE_FREQUENCY:
            gauges.core_frequency_mhz[sample.label("core")] = sample.value
        elif family == exposition.MEMORY_TOTAL:
            gauges.memory_total_bytes = sample.value
        elif family == exposition.MEMORY_FREE:
            gauges.memory_free_bytes = sample.value
        elif family == exposition.DISK_SIZE:
            if sample.label("volume") == self.config.system_volume:
                gauges.disk_size_bytes = sample.value
        elif family == exposition.DISK_FREE:
            if sample.label("volume") == self.config.system_volume:
                gauges.disk_free_bytes = sample.value
