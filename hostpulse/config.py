from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import configparser

DEVICE_SECTION_PREFIX = "device:"


@dataclass(frozen=True)
class EngineConfig:
    poll_interval_ms: int = 2000
    fetch_timeout_ms: int = 10000
    max_retries: int = 3
    retry_delay_ms: int = 2000
    threads_per_processor: int = 2
    system_volume: str = "C:"


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    base_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    retain: bool
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int = 60


@dataclass(frozen=True)
class DeviceConfig:
    name: str
    address: str
    # Route through a local proxy that forwards to the X-Target-URL header.
    proxy_url: str | None = None
    send_target_header: bool = False


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig
    mqtt: MqttConfig | None
    devices: list[DeviceConfig] = field(default_factory=list)

    def device(self, name: str | None) -> DeviceConfig:
        if not self.devices:
            raise LookupError("No devices configured")
        if name is None:
            return self.devices[0]
        for device in self.devices:
            if device.name == name:
                return device
        raise LookupError(f"Unknown device: {name}")


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _load_engine(parser: configparser.ConfigParser) -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        poll_interval_ms=max(
            100, parser.getint("engine", "poll_interval_ms", fallback=defaults.poll_interval_ms)
        ),
        fetch_timeout_ms=max(
            100, parser.getint("engine", "fetch_timeout_ms", fallback=defaults.fetch_timeout_ms)
        ),
        max_retries=max(0, parser.getint("engine", "max_retries", fallback=defaults.max_retries)),
        retry_delay_ms=max(
            100, parser.getint("engine", "retry_delay_ms", fallback=defaults.retry_delay_ms)
        ),
        threads_per_processor=max(
            1,
            parser.getint(
                "engine", "threads_per_processor", fallback=defaults.threads_per_processor
            ),
        ),
        system_volume=parser.get("engine", "system_volume", fallback=defaults.system_volume).strip(),
    )


def _load_mqtt(parser: configparser.ConfigParser) -> MqttConfig | None:
    if not parser.has_section("mqtt"):
        return None
    section = parser["mqtt"]
    return MqttConfig(
        host=section.get("host", "localhost"),
        port=section.getint("port", 1883),
        base_topic=section.get("base_topic", "hostpulse"),
        client_id=section.get("client_id", "hostpulse"),
        username=_get_optional(section.get("username")),
        password=_get_optional(section.get("password")),
        qos=section.getint("qos", 0),
        retain=section.getboolean("retain", False),
        tls_enabled=section.getboolean("tls", False),
        ca_cert=_get_optional(section.get("ca_cert")),
        keepalive=section.getint("keepalive", 60),
    )


def _load_devices(parser: configparser.ConfigParser) -> list[DeviceConfig]:
    devices: list[DeviceConfig] = []
    for section_name in parser.sections():
        if not section_name.startswith(DEVICE_SECTION_PREFIX):
            continue
        name = section_name[len(DEVICE_SECTION_PREFIX):].strip()
        section = parser[section_name]
        address = _get_optional(section.get("address"))
        if not name or address is None:
            raise ValueError(f"Device section [{section_name}] needs a name and an address")
        devices.append(
            DeviceConfig(
                name=name,
                address=address,
                proxy_url=_get_optional(section.get("proxy_url")),
                send_target_header=section.getboolean("send_target_header", False),
            )
        )
    return devices


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    return AppConfig(
        engine=_load_engine(parser),
        mqtt=_load_mqtt(parser),
        devices=_load_devices(parser),
    )
