"""
Dynaconf-powered configuration loader with Pydantic validation.

A `Configuration` holds every tunable of the ingestion service. It is built
from built-in defaults merged with either a local TOML file (loaded through
Dynaconf, so ``GIGANTO_*`` environment variables can override keys) or a raw
TOML draft received from a management server. `Settings` pairs the validated
configuration with the path it was loaded from.
"""

from __future__ import annotations

import datetime as dt
import ipaddress
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import appdirs
import tomlkit
from dynaconf import Dynaconf
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from tomlkit.exceptions import TOMLKitError

from .contracts import FormatError, GigantoError, TomlPeers

logger = logging.getLogger(__name__)

APP_NAME = "giganto"
APP_AUTHOR = "cluml"
ENVVAR_PREFIX = "GIGANTO"

DEFAULT_INGEST_SRV_ADDR = "[::]:38370"
DEFAULT_PUBLISH_SRV_ADDR = "[::]:38371"
DEFAULT_GRAPHQL_SRV_ADDR = "[::]:8442"
DEFAULT_INVALID_ADDR_TO_PEERS = "254.254.254.254:38383"
DEFAULT_ACK_TRANSMISSION = 1024
DEFAULT_RETENTION = "100d"
DEFAULT_MAX_OPEN_FILES = 8000
DEFAULT_MAX_MB_OF_LEVEL_BASE = 512
DEFAULT_NUM_OF_THREAD = 8
DEFAULT_MAX_SUB_COMPACTIONS = 2

# Keys a reconfiguration draft may leave out.
OPTIONAL_DRAFT_KEYS = frozenset({"addr_to_peers", "peers"})

I32_MIN = -(2**31)
I32_MAX = 2**31 - 1
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
U16_MAX = 2**16 - 1

_BRACKETED_ADDR = re.compile(r"^\[(?P<host>[^\]]+)\]:(?P<port>[0-9]+)$")


class ConfigError(GigantoError):
    """Raised when configuration sources are missing or invalid."""


class SocketAddr:
    """IP address and port pair, formatted as ``IP:PORT`` or ``[IPv6]:PORT``."""

    __slots__ = ("ip", "port")

    def __init__(self, ip: ipaddress.IPv4Address | ipaddress.IPv6Address, port: int) -> None:
        self.ip = ip
        self.port = port

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SocketAddr):
            return NotImplemented
        return self.ip == other.ip and self.port == other.port

    def __hash__(self) -> int:
        return hash((self.ip, self.port))

    def __repr__(self) -> str:
        return f"SocketAddr({str(self)!r})"

    @classmethod
    def parse(cls, raw: str) -> SocketAddr:
        """
        Parse an ``IP:PORT`` string.

        IPv6 hosts must be enclosed in brackets. Raises `ValueError` with a
        short reason when the string is not a socket address.
        """
        if not isinstance(raw, str):
            raise ValueError(f"expected a string, got {type(raw).__name__}")
        match = _BRACKETED_ADDR.match(raw)
        ip: ipaddress.IPv4Address | ipaddress.IPv6Address
        if match:
            host, port = match.group("host"), match.group("port")
            ip = ipaddress.IPv6Address(host)
        else:
            host, sep, port = raw.rpartition(":")
            if not sep or not host or not port.isdigit():
                raise ValueError("invalid socket address syntax")
            ip = ipaddress.IPv4Address(host)
        number = int(port)
        if number > U16_MAX:
            raise ValueError("port out of range")
        return cls(ip=ip, port=number)

    def __str__(self) -> str:
        if isinstance(self.ip, ipaddress.IPv6Address):
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


_NANOS_PER_UNIT: dict[str, int] = {
    name: nanos
    for names, nanos in (
        (("nsec", "ns"), 1),
        (("usec", "us"), 1_000),
        (("msec", "ms"), 1_000_000),
        (("seconds", "second", "sec", "s"), 1_000_000_000),
        (("minutes", "minute", "min", "m"), 60 * 1_000_000_000),
        (("hours", "hour", "hr", "h"), 3_600 * 1_000_000_000),
        (("days", "day", "d"), 86_400 * 1_000_000_000),
        (("weeks", "week", "w"), 7 * 86_400 * 1_000_000_000),
        (("months", "month", "M"), 2_630_016 * 1_000_000_000),
        (("years", "year", "y"), 31_557_600 * 1_000_000_000),
    )
    for name in names
}

_DURATION_TOKEN = re.compile(r"\s*(?P<value>[0-9]+)\s*(?P<unit>[a-zA-Z]+)")


def parse_duration(raw: str) -> dt.timedelta:
    """
    Parse a human readable duration such as ``100d`` or ``1h 30min``.

    Every number needs a unit; units are case sensitive (``M`` is months,
    ``m`` minutes). Sub-microsecond precision is truncated.
    """
    text = raw.strip()
    if not text:
        raise ValueError("empty duration")
    total = 0
    position = 0
    while position < len(text):
        match = _DURATION_TOKEN.match(text, position)
        if match is None:
            raise ValueError(f"unexpected input at position {position}")
        unit = match.group("unit")
        if unit not in _NANOS_PER_UNIT:
            raise ValueError(f"unknown time unit {unit!r}")
        total += int(match.group("value")) * _NANOS_PER_UNIT[unit]
        position = match.end()
        while position < len(text) and text[position].isspace():
            position += 1
    return dt.timedelta(microseconds=total // 1_000)


def format_duration(value: dt.timedelta) -> str:
    """
    Render a duration in humantime style, e.g. ``3months 8days 16h 19m 12s``
    for a hundred days. Years, months and days are pluralized; the output is
    always accepted by `parse_duration`.
    """
    micros = value // dt.timedelta(microseconds=1)
    if micros == 0:
        return "0s"
    parts: list[str] = []
    for unit, plural, size in (
        ("year", "years", 31_557_600_000_000),
        ("month", "months", 2_630_016_000_000),
        ("day", "days", 86_400_000_000),
        ("h", "h", 3_600_000_000),
        ("m", "m", 60_000_000),
        ("s", "s", 1_000_000),
        ("ms", "ms", 1_000),
        ("us", "us", 1),
    ):
        count, micros = divmod(micros, size)
        if count:
            parts.append(f"{count}{plural if count > 1 else unit}")
    return " ".join(parts)


def _default_dir(name: str) -> Path:
    return Path(appdirs.user_data_dir(name, appauthor=False))


def default_config_path() -> Path:
    """Location of the configuration file picked up when no path is given."""
    return Path(appdirs.user_config_dir(APP_NAME, APP_AUTHOR)) / "config.toml"


def _socket_addr(key: str, value: Any) -> SocketAddr:
    if isinstance(value, SocketAddr):
        return value
    try:
        return SocketAddr.parse(value)
    except ValueError as exc:
        raise FormatError(key, value, str(exc)) from exc


class PeerIdentity(BaseModel):
    """Hostname and address of another giganto node."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    addr: SocketAddr
    hostname: str

    @field_validator("addr", mode="before")
    @classmethod
    def _parse_addr(cls, value: Any) -> SocketAddr:
        return _socket_addr("peers.addr", value)

    def get_hostname(self) -> str:
        return self.hostname

    def get_addr(self) -> str:
        return str(self.addr)


class Configuration(BaseModel):
    """Every tunable of the ingestion service."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        validate_default=True,
        arbitrary_types_allowed=True,
    )

    ingest_srv_addr: SocketAddr = Field(default=DEFAULT_INGEST_SRV_ADDR)
    publish_srv_addr: SocketAddr = Field(default=DEFAULT_PUBLISH_SRV_ADDR)
    graphql_srv_addr: SocketAddr = Field(default=DEFAULT_GRAPHQL_SRV_ADDR)
    data_dir: Path = Field(default_factory=lambda: _default_dir("db"))
    retention: dt.timedelta = Field(default=DEFAULT_RETENTION)
    log_dir: Path = Field(default_factory=lambda: _default_dir("logs/apps"))
    export_dir: Path = Field(default_factory=lambda: _default_dir("export"))

    # storage engine tuning
    max_open_files: int = Field(default=DEFAULT_MAX_OPEN_FILES, ge=I32_MIN, le=I32_MAX)
    max_mb_of_level_base: int = Field(default=DEFAULT_MAX_MB_OF_LEVEL_BASE, ge=0, le=U64_MAX)
    num_of_thread: int = Field(default=DEFAULT_NUM_OF_THREAD, ge=I32_MIN, le=I32_MAX)
    max_sub_compactions: int = Field(default=DEFAULT_MAX_SUB_COMPACTIONS, ge=0, le=U32_MAX)

    # cluster peers
    addr_to_peers: SocketAddr | None = Field(default=DEFAULT_INVALID_ADDR_TO_PEERS)
    peers: frozenset[PeerIdentity] | None = Field(default=None)

    ack_transmission: int = Field(default=DEFAULT_ACK_TRANSMISSION, ge=0, le=U16_MAX)

    @field_validator("ingest_srv_addr", "publish_srv_addr", "graphql_srv_addr", mode="before")
    @classmethod
    def _parse_socket_addr(cls, value: Any, info: ValidationInfo) -> SocketAddr:
        return _socket_addr(info.field_name or "address", value)

    @field_validator("addr_to_peers", mode="before")
    @classmethod
    def _parse_peer_addr(cls, value: Any) -> SocketAddr | None:
        # Cluster mode is only enabled when a real peer address is configured.
        if value is None or value == "" or value == DEFAULT_INVALID_ADDR_TO_PEERS:
            return None
        return _socket_addr("addr_to_peers", value)

    @field_validator("retention", mode="before")
    @classmethod
    def _parse_retention(cls, value: Any) -> dt.timedelta:
        if isinstance(value, dt.timedelta):
            if value < dt.timedelta(0):
                raise FormatError("retention", value, "duration must not be negative")
            return value
        if not isinstance(value, str):
            raise FormatError("retention", value, "expected a duration string")
        try:
            return parse_duration(value)
        except (ValueError, OverflowError) as exc:
            raise FormatError("retention", value, str(exc)) from exc

    @field_validator("peers", mode="before")
    @classmethod
    def _normalize_peers(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str | bytes | Mapping):
            raise ValueError("peers must be a list of {addr, hostname} tables")
        entries: list[Any] = []
        for entry in value:
            if isinstance(entry, PeerIdentity | Mapping):
                entries.append(entry)
            elif isinstance(entry, TomlPeers):
                entries.append({"addr": entry.get_addr(), "hostname": entry.get_hostname()})
            else:
                raise ValueError(f"unsupported peer entry {entry!r}")
        return entries

    def to_toml_document(self) -> tomlkit.TOMLDocument:
        """
        Render every field, including defaults, as a TOML document.

        TOML has no null: absent peers leave the `peers` key out, while an
        empty peer set is written as `peers = []`.
        """
        doc = tomlkit.document()
        doc.add("ingest_srv_addr", str(self.ingest_srv_addr))
        doc.add("publish_srv_addr", str(self.publish_srv_addr))
        doc.add("graphql_srv_addr", str(self.graphql_srv_addr))
        doc.add("data_dir", str(self.data_dir))
        doc.add("retention", format_duration(self.retention))
        doc.add("log_dir", str(self.log_dir))
        doc.add("export_dir", str(self.export_dir))
        doc.add("max_open_files", self.max_open_files)
        doc.add("max_mb_of_level_base", self.max_mb_of_level_base)
        doc.add("num_of_thread", self.num_of_thread)
        doc.add("max_sub_compactions", self.max_sub_compactions)
        doc.add(
            "addr_to_peers",
            str(self.addr_to_peers) if self.addr_to_peers else DEFAULT_INVALID_ADDR_TO_PEERS,
        )
        if self.peers is not None:
            peers = tomlkit.array()
            for peer in self.sorted_peers():
                entry = tomlkit.inline_table()
                entry.append("addr", peer.get_addr())
                entry.append("hostname", peer.get_hostname())
                peers.append(entry)
            doc.add("peers", peers)
        doc.add("ack_transmission", self.ack_transmission)
        return doc

    def sorted_peers(self) -> list[PeerIdentity]:
        if not self.peers:
            return []
        return sorted(self.peers, key=lambda peer: (peer.hostname, str(peer.addr)))


def build_configuration(raw: Mapping[str, Any]) -> Configuration:
    """Validate a raw mapping, filling every missing key from the defaults."""
    data = {str(key).lower(): value for key, value in raw.items()}
    try:
        return Configuration.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Configuration validation failed: {exc}") from exc


def _load_toml(toml_str: str) -> dict[str, Any]:
    try:
        return tomlkit.parse(toml_str).unwrap()
    except TOMLKitError as exc:
        raise ConfigError(f"Invalid TOML: {exc}") from exc


def parse_configuration(toml_str: str) -> Configuration:
    """Parse a TOML draft and merge it over the defaults."""
    return build_configuration(_load_toml(toml_str))


def parse_configuration_draft(toml_str: str) -> Configuration:
    """
    Parse a complete configuration pushed for reconfiguration.

    Nothing is filled in from the defaults except the peer settings, so an
    empty or partial draft cannot silently reset a node.
    """
    raw = _load_toml(toml_str)
    present = {str(key).lower() for key in raw}
    missing = sorted(set(Configuration.model_fields) - OPTIONAL_DRAFT_KEYS - present)
    if missing:
        raise ConfigError(f"Configuration draft is missing fields: {', '.join(missing)}")
    return build_configuration(raw)


class Settings(BaseModel):
    """A validated configuration plus the file it came from, if any."""

    model_config = ConfigDict(frozen=True)

    config: Configuration
    cfg_path: str | None = Field(default=None)

    @classmethod
    def new(cls) -> Settings:
        """
        Load the default configuration file if it exists, defaults otherwise.
        """
        config_path = default_config_path()
        if config_path.exists():
            return cls.from_file(str(config_path))
        logger.info("No configuration file at %s; using defaults.", config_path)
        return cls(config=build_configuration({}), cfg_path=None)

    @classmethod
    def from_file(cls, cfg_path: str) -> Settings:
        """Load settings from the given TOML file merged over the defaults."""
        path = Path(cfg_path)
        if not path.is_file():
            raise ConfigError(f"Configuration file {cfg_path} not found.")
        try:
            source = Dynaconf(
                envvar_prefix=ENVVAR_PREFIX,
                settings_files=[str(path)],
                load_dotenv=False,
                environments=False,
            )
            raw = source.as_dict()
        except Exception as exc:
            raise ConfigError(f"Failed to load configuration file {cfg_path}: {exc}") from exc
        config = build_configuration(raw)
        logger.info("Loaded configuration from %s", cfg_path)
        return cls(config=config, cfg_path=cfg_path)

    @classmethod
    def from_server(cls, toml_str: str) -> Settings:
        """Build settings from a TOML draft pushed by a management server."""
        return cls(config=parse_configuration(toml_str), cfg_path=None)

    def to_toml_string(self) -> str:
        return tomlkit.dumps(self.config.to_toml_document())


__all__ = [
    "ConfigError",
    "Configuration",
    "PeerIdentity",
    "Settings",
    "SocketAddr",
    "build_configuration",
    "default_config_path",
    "format_duration",
    "parse_configuration",
    "parse_configuration_draft",
    "parse_duration",
]
