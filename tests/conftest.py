"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from typing import Callable

import pytest

from hostpulse.config import EngineConfig
from hostpulse.engine import MonitorEngine


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "scheduler: mark test as exercising the poll state machine"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Timer factory that records timers and fires them on demand."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.timers: list[ManualTimer] = []

    def __call__(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_s, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self) -> ManualTimer:
        timer = self.pending[0]
        timer.fired = True
        if self.clock is not None:
            self.clock.advance(timer.delay_s)
        timer.callback()
        return timer


def build_exposition(
    received: float | None = None,
    sent: float | None = None,
    cpu: dict[str, dict[str, float]] | None = None,
    memory_total: float | None = None,
    memory_free: float | None = None,
    disk_size: float | None = None,
    disk_free: float | None = None,
    volume: str = "C:",
    logical_processors: int | None = None,
    frequency_mhz: dict[str, float] | None = None,
) -> str:
    lines = ["# HELP windows_exporter_build_info windows_exporter build info", "windows_exporter_build_info 1"]
    for core, modes in (cpu or {}).items():
        for mode, seconds in modes.items():
            lines.append(f'windows_cpu_time_total{{core="{core}",mode="{mode}"}} {seconds}')
    for core, mhz in (frequency_mhz or {}).items():
        lines.append(f'windows_cpu_core_frequency_mhz{{core="{core}"}} {mhz}')
    if logical_processors is not None:
        lines.append(f"windows_cs_logical_processors {logical_processors}")
    if received is not None:
        lines.append(f'windows_net_bytes_received_total{{nic="Ethernet"}} {received}')
    if sent is not None:
        lines.append(f'windows_net_bytes_sent_total{{nic="Ethernet"}} {sent}')
    if memory_total is not None:
        lines.append(f"windows_os_visible_memory_bytes {memory_total}")
    if memory_free is not None:
        lines.append(f"windows_os_physical_memory_free_bytes {memory_free}")
    if disk_size is not None:
        lines.append(f'windows_logical_disk_size_bytes{{volume="{volume}"}} {disk_size}')
    if disk_free is not None:
        lines.append(f'windows_logical_disk_free_bytes{{volume="{volume}"}} {disk_free}')
    return "\n".join(lines) + "\n"


@pytest.fixture
def clock():
    """Create a FakeClock."""
    return FakeClock()


@pytest.fixture
def timers(clock):
    """Create manual timers tied to the fake clock."""
    return ManualTimers(clock)


@pytest.fixture
def exposition_text():
    """Return the exposition body builder."""
    return build_exposition


@pytest.fixture
def engine_config():
    """Create the default EngineConfig."""
    return EngineConfig()


@pytest.fixture
def engine(engine_config, clock):
    """Create a MonitorEngine with fixed clocks."""
    return MonitorEngine(engine_config, clock=clock, wall_clock=lambda: "2026-01-01T00:00:00+00:00")
