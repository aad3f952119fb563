from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import re
from typing import Iterator

from hostpulse.logging_utils import TRACE_LEVEL

logger = logging.getLogger(__name__)

CPU_TIME = "windows_cpu_time_total"
CPU_PERFORMANCE = "windows_cpu_processor_performance_total"
CPU_MPERF = "windows_cpu_processor_mperf_total"
LOGICAL_PROCESSORS = "windows_cs_logical_processors"
CORE_FREQUENCY = "windows_cpu_core_frequency_mhz"
NET_RECEIVED = "windows_net_bytes_received_total"
NET_SENT = "windows_net_bytes_sent_total"
MEMORY_TOTAL = "windows_os_visible_memory_bytes"
MEMORY_FREE = "windows_os_physical_memory_free_bytes"
DISK_SIZE = "windows_logical_disk_size_bytes"
DISK_FREE = "windows_logical_disk_free_bytes"

# Order matters: the first family whose substring appears in a name wins.
KNOWN_FAMILIES: tuple[str, ...] = (
    CPU_TIME,
    CPU_PERFORMANCE,
    CPU_MPERF,
    LOGICAL_PROCESSORS,
    CORE_FREQUENCY,
    NET_RECEIVED,
    NET_SENT,
    MEMORY_TOTAL,
    MEMORY_FREE,
    DISK_SIZE,
    DISK_FREE,
)

_LINE_RE = re.compile(
    r"^(?P<name>[A-Za-z_:][A-Za-z0-9_:]*)"
    r"(?:\{(?P<labels>.*)\})?"
    r"\s+(?P<value>\S+)"
    r"(?:\s+(?P<timestamp>-?\d+))?\s*$"
)
_LABEL_RE = re.compile(r'([A-Za-z_][A-Za-z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"')
_ESCAPES = {"\\\\": "\\", '\\"': '"', "\\n": "\n"}


@dataclass(frozen=True)
class MetricSample:
    name: str
    labels: dict[str, str] = field(default_factory=dict, hash=False)
    value: float = 0.0
    family: str = ""

    def label(self, key: str, default: str = "") -> str:
        return self.labels.get(key, default)


def match_family(name: str) -> str | None:
    """Return the known family a metric name belongs to, if any."""
    for family in KNOWN_FAMILIES:
        if family in name:
            return family
    return None


def _unescape(value: str) -> str:
    if "\\" not in value:
        return value
    return re.sub(r"\\[\\\"n]", lambda m: _ESCAPES[m.group(0)], value)


def parse_labels(text: str | None) -> dict[str, str]:
    if not text:
        return {}
    labels: dict[str, str] = {}
    for key, value in _LABEL_RE.findall(text):
        labels[key] = _unescape(value)
    return labels


def parse_value(text: str) -> float:
    """Parse a sample value; unparseable or non-finite text degrades to 0.0."""
    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_line(line: str) -> MetricSample | None:
    """Parse one exposition line into a sample, or None when not recognized."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    match = _LINE_RE.match(line)
    if match is None:
        if logger.isEnabledFor(TRACE_LEVEL):
            logger.log(TRACE_LEVEL, "Dropping malformed line: %s", line)
        return None
    name = match.group("name")
    family = match_family(name)
    if family is None:
        return None
    return MetricSample(
        name=name,
        labels=parse_labels(match.group("labels")),
        value=parse_value(match.group("value")),
        family=family,
    )


def parse_exposition(text: str) -> Iterator[MetricSample]:
    """Yield recognized samples from a full exposition body in line order."""
    for line in text.splitlines():
        sample = parse_line(line)
        if sample is not None:
            yield sample
