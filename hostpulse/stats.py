from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from hostpulse import exposition
from hostpulse.cores import CoreIndexer, CoreTimeAccumulator
from hostpulse.counters import CounterState, CounterTracker
from hostpulse.errors import FetchFailure

SCHEMA_NAME = "hostpulse-device-snapshot"
SCHEMA_VERSION = 1

BYTES_PER_MEBIBYTE = 1024 * 1024
BYTES_PER_GIBIBYTE = 1024 ** 3


@dataclass(frozen=True)
class CoreUsage:
    core_id: str
    usage_percent: float
    frequency_ghz: float
    linear_index: int


@dataclass(frozen=True)
class DeviceSnapshot:
    """Latest derived statistics for one monitored device."""

    device: str
    timestamp: str | None = None
    cpu_usage_percent: float = 0.0
    cpu_core_count: int = 0
    cpu_frequency_ghz: float = 0.0
    cpu_cores: tuple[CoreUsage, ...] = ()
    net_received_speed_mbps: float = 0.0
    net_sent_speed_mbps: float = 0.0
    memory_total_gb: float = 0.0
    memory_used_gb: float = 0.0
    memory_free_gb: float = 0.0
    disk_total_gb: float = 0.0
    disk_used_gb: float = 0.0
    disk_free_gb: float = 0.0
    last_error: FetchFailure | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "schema": {"name": SCHEMA_NAME, "version": SCHEMA_VERSION},
            "device": self.device,
            "ts": self.timestamp,
            "cpu": {
                "usage_pct": self.cpu_usage_percent,
                "core_count": self.cpu_core_count,
                "frequency_ghz": self.cpu_frequency_ghz,
                "cores": [
                    {
                        "id": core.core_id,
                        "index": core.linear_index,
                        "usage_pct": core.usage_percent,
                        "frequency_ghz": core.frequency_ghz,
                    }
                    for core in self.cpu_cores
                ],
            },
            "network": {
                "received_mbps": self.net_received_speed_mbps,
                "sent_mbps": self.net_sent_speed_mbps,
            },
            "memory": {
                "total_gb": self.memory_total_gb,
                "used_gb": self.memory_used_gb,
                "free_gb": self.memory_free_gb,
            },
            "disk": {
                "total_gb": self.disk_total_gb,
                "used_gb": self.disk_used_gb,
                "free_gb": self.disk_free_gb,
            },
            "error": self.last_error.to_payload() if self.last_error else None,
        }


@dataclass
class GaugeReadings:
    """Instantaneous values and core labels seen during one parse pass."""

    logical_processors: int | None = None
    memory_total_bytes: float | None = None
    memory_free_bytes: float | None = None
    disk_size_bytes: float | None = None
    disk_free_bytes: float | None = None
    core_frequency_mhz: dict[str, float] = field(default_factory=dict)
    cores: list[str] = field(default_factory=list)

    def see_core(self, core_id: str) -> None:
        if core_id and core_id not in self.cores:
            self.cores.append(core_id)


def bytes_per_second_to_mbps(rate: float) -> float:
    return rate / BYTES_PER_MEBIBYTE * 8


def _gigabytes(value: float | None) -> float:
    return (value or 0.0) / BYTES_PER_GIBIBYTE


class DerivedStatsComputer:
    def __init__(self, indexer: CoreIndexer) -> None:
        self.indexer = indexer

    def compute(
        self,
        previous: DeviceSnapshot,
        tracker: CounterTracker,
        gauges: GaugeReadings,
        cycle_timestamp: float,
        timestamp: str | None = None,
    ) -> DeviceSnapshot:
        """Build the snapshot for a successful cycle.

        Only counters observed at ``cycle_timestamp`` contribute, so an
        identity missing from this pass never produces a stale rate.
        """
        cores = self._core_usage(tracker, gauges, cycle_timestamp)
        cpu_usage = sum(core.usage_percent for core in cores) / len(cores) if cores else 0.0
        frequencies = [core.frequency_ghz for core in cores if core.frequency_ghz > 0]
        if not frequencies:
            frequencies = [mhz / 1000.0 for mhz in gauges.core_frequency_mhz.values() if mhz > 0]
        cpu_frequency = sum(frequencies) / len(frequencies) if frequencies else 0.0
        core_count = gauges.logical_processors
        if core_count is None:
            core_count = len(cores)

        received = self._network_speed(tracker, exposition.NET_RECEIVED, cycle_timestamp)
        sent = self._network_speed(tracker, exposition.NET_SENT, cycle_timestamp)

        memory_total = _gigabytes(gauges.memory_total_bytes)
        memory_free = _gigabytes(gauges.memory_free_bytes)
        disk_total = _gigabytes(gauges.disk_size_bytes)
        disk_free = _gigabytes(gauges.disk_free_bytes)

        return DeviceSnapshot(
            device=previous.device,
            timestamp=timestamp,
            cpu_usage_percent=cpu_usage,
            cpu_core_count=core_count,
            cpu_frequency_ghz=cpu_frequency,
            cpu_cores=tuple(cores),
            net_received_speed_mbps=(
                received if received is not None else previous.net_received_speed_mbps
            ),
            net_sent_speed_mbps=sent if sent is not None else previous.net_sent_speed_mbps,
            memory_total_gb=memory_total,
            memory_used_gb=max(0.0, memory_total - memory_free),
            memory_free_gb=memory_free,
            disk_total_gb=disk_total,
            disk_used_gb=max(0.0, disk_total - disk_free),
            disk_free_gb=disk_free,
            last_error=None,
        )

    @staticmethod
    def apply_failure(
        previous: DeviceSnapshot, failure: FetchFailure, timestamp: str | None = None
    ) -> DeviceSnapshot:
        """Zero network, memory and disk; CPU keeps its last good values."""
        return replace(
            previous,
            timestamp=timestamp,
            net_received_speed_mbps=0.0,
            net_sent_speed_mbps=0.0,
            memory_total_gb=0.0,
            memory_used_gb=0.0,
            memory_free_gb=0.0,
            disk_total_gb=0.0,
            disk_used_gb=0.0,
            disk_free_gb=0.0,
            last_error=failure,
        )

    def _core_usage(
        self, tracker: CounterTracker, gauges: GaugeReadings, cycle_timestamp: float
    ) -> list[CoreUsage]:
        accumulators: dict[str, CoreTimeAccumulator] = {
            core_id: CoreTimeAccumulator() for core_id in gauges.cores
        }
        for labels, state in tracker.family(exposition.CPU_TIME):
            core_id = labels.get("core", "")
            if core_id not in accumulators or state.current_timestamp != cycle_timestamp:
                continue
            accumulators[core_id].add(labels.get("mode", ""), state.delta())

        indices = self.indexer.assign(gauges.cores)
        usages = [
            CoreUsage(
                core_id=core_id,
                usage_percent=accumulator.usage_percent(),
                frequency_ghz=self._core_frequency(tracker, gauges, core_id, cycle_timestamp),
                linear_index=indices[core_id],
            )
            for core_id, accumulator in accumulators.items()
        ]
        usages.sort(key=lambda core: core.linear_index)
        return usages

    @staticmethod
    def _core_frequency(
        tracker: CounterTracker, gauges: GaugeReadings, core_id: str, cycle_timestamp: float
    ) -> float:
        nominal_mhz = gauges.core_frequency_mhz.get(core_id, 0.0)
        if nominal_mhz <= 0:
            return 0.0
        labels = {"core": core_id}
        performance = tracker.get(exposition.CPU_PERFORMANCE, labels)
        mperf = tracker.get(exposition.CPU_MPERF, labels)
        if _fresh(performance, cycle_timestamp) and _fresh(mperf, cycle_timestamp):
            performance_delta = performance.delta()
            mperf_delta = mperf.delta()
            if performance_delta > 0 and mperf_delta > 0:
                # Processor performance is a percentage of nominal frequency.
                return nominal_mhz * (performance_delta / mperf_delta) / 100.0 / 1000.0
        return nominal_mhz / 1000.0

    @staticmethod
    def _network_speed(
        tracker: CounterTracker, family: str, cycle_timestamp: float
    ) -> float | None:
        """Summed throughput across NICs, or None when no rate is available yet."""
        total = 0.0
        measured = False
        for _labels, state in tracker.family(family):
            if state.current_timestamp != cycle_timestamp or not state.has_rate():
                continue
            measured = True
            total += state.rate()
        if not measured:
            return None
        return bytes_per_second_to_mbps(total)


def _fresh(state: CounterState | None, cycle_timestamp: float) -> bool:
    return state is not None and state.current_timestamp == cycle_timestamp
