from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Callable

from hostpulse.config import load_config
from hostpulse.engine import MonitorEngine
from hostpulse.errors import TransportFormatError, classify_exception
from hostpulse.fetcher import HttpFetcher
from hostpulse.logging_utils import configure_logging, resolve_log_level
from hostpulse.mqtt_client import MqttPublisher
from hostpulse.scheduler import FetchCallable, PollScheduler
from hostpulse.schema import validate_payload
from hostpulse.stats import DeviceSnapshot

logger = logging.getLogger("hostpulse")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Poll a windows_exporter host and derive live statistics")
    parser.add_argument(
        "--config",
        default="config/example.cfg",
        help="Path to CFG configuration file",
    )
    parser.add_argument(
        "--device",
        help="Name of the [device:NAME] section to monitor (default: first device)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log snapshots without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Take two samples one poll interval apart, emit the snapshot, then exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the latest snapshot JSON to a file (overwrites on each cycle)",
    )
    return parser


def collect_once(
    engine: MonitorEngine,
    device: str,
    fetch: FetchCallable,
    sleep: Callable[[float], None] = time.sleep,
) -> DeviceSnapshot:
    """Sample a device twice so counter rates are populated.

    Each sample is retried up to ``max_retries`` times, ``retry_delay_ms``
    apart, like the poll loop. A sample that still fails is reported on the
    returned snapshot.
    """
    config = engine.config
    snapshot = DeviceSnapshot(device=device)
    for sample in range(2):
        if sample:
            sleep(config.poll_interval_ms / 1000.0)
        retries = 0
        while True:
            try:
                body = fetch()
                if not isinstance(body, str):
                    raise TransportFormatError(f"Expected text body, got {type(body).__name__}")
                break
            except Exception as exc:  # reported on the snapshot, not raised
                failure = classify_exception(exc)
            if retries >= config.max_retries:
                logger.warning(
                    "Fetch from %s failed after %s retries: %s",
                    device,
                    config.max_retries,
                    failure.describe(),
                )
                return engine.fail(device, failure)
            retries += 1
            logger.info(
                "Fetch from %s failed (%s); retry %s/%s in %s ms.",
                device,
                failure.describe(),
                retries,
                config.max_retries,
                config.retry_delay_ms,
            )
            sleep(config.retry_delay_ms / 1000.0)
        snapshot = engine.ingest(device, body)
    return snapshot


class SnapshotSink:
    """Validates, dumps and publishes every snapshot the engine produces."""

    def __init__(
        self,
        publisher: MqttPublisher | None,
        dump_path: str | None = None,
        pretty: bool = False,
    ) -> None:
        self.publisher = publisher
        self.dump_path = dump_path
        self.pretty = pretty

    def __call__(self, snapshot: DeviceSnapshot) -> None:
        payload = snapshot.to_payload()
        schema_errors = validate_payload(payload)
        if schema_errors:
            logger.warning("Schema validation failed with %s errors.", len(schema_errors))
            logger.debug("Schema errors: %s", schema_errors)
        payload_json = json.dumps(payload, indent=2) if self.pretty else json.dumps(payload)
        if self.dump_path:
            with open(self.dump_path, "w", encoding="utf-8") as handle:
                handle.write(payload_json)
        if snapshot.last_error is not None:
            logger.info("%s: %s", snapshot.device, snapshot.last_error.describe())
        if self.publisher is None:
            logger.debug("Snapshot: %s", payload_json)
        else:
            self.publisher.publish_snapshot(snapshot)


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    config = load_config(args.config)
    device = config.device(args.device)

    publisher = None
    if args.dry_run:
        logger.info("Dry run enabled; skipping MQTT publish.")
    elif config.mqtt is None:
        logger.info("No [mqtt] section configured; snapshots are only logged.")
    else:
        publisher = MqttPublisher(config.mqtt)
        publisher.connect()

    sink = SnapshotSink(publisher, args.dump_json, pretty=level <= logging.DEBUG)
    engine = MonitorEngine(config.engine)
    fetcher = HttpFetcher(device, timeout_ms=config.engine.fetch_timeout_ms)

    if args.once:
        try:
            sink(collect_once(engine, device.name, fetcher))
        finally:
            if publisher is not None:
                publisher.disconnect()
        return

    scheduler = PollScheduler(engine)
    scheduler.add_listener(sink)
    scheduler.select(device.name, fetcher)
    logger.info(
        "Monitoring %s at %s every %s ms.",
        device.name,
        fetcher.target_url,
        config.engine.poll_interval_ms,
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("hostpulse stopped.")
    finally:
        scheduler.stop_all()
        if publisher is not None:
            publisher.disconnect()


if __name__ == "__main__":
    main()
