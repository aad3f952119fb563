"""Live statistics from remote windows_exporter hosts."""

from hostpulse.config import AppConfig, EngineConfig, load_config
from hostpulse.engine import MonitorEngine
from hostpulse.errors import FailureKind, FetchFailure
from hostpulse.exposition import MetricSample, parse_exposition
from hostpulse.fetcher import HttpFetcher
from hostpulse.scheduler import PollScheduler, PollStatus
from hostpulse.stats import CoreUsage, DeviceSnapshot

__all__ = [
    "AppConfig",
    "CoreUsage",
    "DeviceSnapshot",
    "EngineConfig",
    "FailureKind",
    "FetchFailure",
    "HttpFetcher",
    "MetricSample",
    "MonitorEngine",
    "PollScheduler",
    "PollStatus",
    "load_config",
    "parse_exposition",
]
