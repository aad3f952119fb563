from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping

CounterKey = tuple[str, tuple[tuple[str, str], ...]]


def counter_key(family: str, labels: Mapping[str, str]) -> CounterKey:
    """Identity of a counter: metric family plus a sorted label signature."""
    return family, tuple(sorted(labels.items()))


@dataclass
class CounterState:
    current: float
    current_timestamp: float
    previous: float | None = None
    last_timestamp: float | None = None

    def update(self, value: float, timestamp: float) -> None:
        self.previous = self.current
        self.last_timestamp = self.current_timestamp
        self.current = value
        self.current_timestamp = timestamp

    def delta(self) -> float:
        """Counter increase since the previous observation.

        Zero while bootstrapping and when the counter went backwards (the
        exporter restarted).
        """
        if self.previous is None or self.current < self.previous:
            return 0.0
        return self.current - self.previous

    def elapsed(self) -> float:
        if self.last_timestamp is None:
            return 0.0
        return max(self.current_timestamp - self.last_timestamp, 0.0)

    def has_rate(self) -> bool:
        return self.previous is not None and self.elapsed() > 0

    def rate(self) -> float:
        """Per-second increase, 0 when no rate can be computed."""
        if not self.has_rate():
            return 0.0
        return self.delta() / self.elapsed()


class CounterTracker:
    """Keyed store of counter observations for one device."""

    def __init__(self) -> None:
        self._states: dict[CounterKey, CounterState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: object) -> bool:
        return key in self._states

    def observe(
        self, family: str, labels: Mapping[str, str], value: float, timestamp: float
    ) -> CounterState:
        key = counter_key(family, labels)
        state = self._states.get(key)
        if state is None:
            state = CounterState(current=value, current_timestamp=timestamp)
            self._states[key] = state
        else:
            state.update(value, timestamp)
        return state

    def get(self, family: str, labels: Mapping[str, str]) -> CounterState | None:
        return self._states.get(counter_key(family, labels))

    def family(self, family: str) -> Iterator[tuple[dict[str, str], CounterState]]:
        """Iterate (labels, state) pairs tracked for one metric family."""
        for (name, signature), state in self._states.items():
            if name == family:
                yield dict(signature), state

    def discard(self) -> None:
        self._states.clear()
