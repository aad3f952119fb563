from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterable

CPU_MODES = ("idle", "user", "privileged", "interrupt", "dpc")


@dataclass
class CoreTimeAccumulator:
    """Seconds a core spent in each mode during the last poll interval."""

    idle: float = 0.0
    user: float = 0.0
    privileged: float = 0.0
    interrupt: float = 0.0
    dpc: float = 0.0

    @property
    def total_non_idle(self) -> float:
        return self.user + self.privileged + self.interrupt + self.dpc

    def add(self, mode: str, seconds: float) -> None:
        if mode in CPU_MODES:
            setattr(self, mode, getattr(self, mode) + seconds)

    def usage_fraction(self) -> float:
        busy = self.total_non_idle
        total = busy + self.idle
        if not math.isfinite(total) or total <= 0:
            return 0.0
        return min(max(busy / total, 0.0), 1.0)

    def usage_percent(self) -> float:
        return self.usage_fraction() * 100.0


class CoreIndexer:
    """Orders "processor,thread" core labels for display.

    Assumes every processor exposes ``threads_per_processor`` hardware
    threads; hosts with another topology need the value configured or they
    will be misordered.
    """

    def __init__(self, threads_per_processor: int = 2) -> None:
        if threads_per_processor < 1:
            raise ValueError("threads_per_processor must be at least 1")
        self.threads_per_processor = threads_per_processor

    def index(self, core_id: str) -> int | None:
        parts = core_id.split(",")
        if len(parts) != 2:
            return None
        try:
            processor, thread = (int(part.strip()) for part in parts)
        except ValueError:
            return None
        if processor < 0 or thread < 0:
            return None
        return thread + processor * self.threads_per_processor

    def assign(self, core_ids: Iterable[str]) -> dict[str, int]:
        """Map each core label to its linear index.

        Labels that do not parse are placed after every well-formed core, in
        the order they were first seen.
        """
        indices: dict[str, int] = {}
        malformed: list[str] = []
        for core_id in core_ids:
            if core_id in indices or core_id in malformed:
                continue
            index = self.index(core_id)
            if index is None:
                malformed.append(core_id)
            else:
                indices[core_id] = index
        next_index = max(indices.values(), default=-1) + 1
        for offset, core_id in enumerate(malformed):
            indices[core_id] = next_index + offset
        return indices
