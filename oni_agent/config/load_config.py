from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _as_positive_int(value: Any, *, key: str) -> int:
    n = _as_int(value, key=key)
    if n < 1:
        raise ConfigError(f"Invalid {key}: must be >= 1, got {n}")
    return n


def _as_dir(value: Any, *, key: str) -> str:
    s = str(value or "").strip()
    if not s:
        return ""
    p = Path(s).expanduser().resolve()
    if not p.is_dir():
        raise ConfigError(f"Invalid setting for {key}: {str(p)!r} is not a valid directory")
    return str(p)


@dataclass(frozen=True)
class ONIConfig:
    location: str
    batch_source: str


@dataclass(frozen=True)
class QueueConfig:
    capacity: int
    purge_interval_s: float


@dataclass(frozen=True)
class RetentionConfig:
    failed_hours: float
    successful_days: float
    default_days: float

    @property
    def failed_s(self) -> float:
        return self.failed_hours * 3600.0

    @property
    def successful_s(self) -> float:
        return self.successful_days * 86400.0

    @property
    def default_s(self) -> float:
        return self.default_days * 86400.0


@dataclass(frozen=True)
class CopyConfig:
    attempts: int
    delay_s: float


@dataclass(frozen=True)
class AgentConfig:
    oni: ONIConfig
    queue: QueueConfig
    retention: RetentionConfig
    copy: CopyConfig


def default_config_path() -> Path:
    return Path(os.getenv("ONI_AGENT_CONFIG_PATH", "config/default.toml")).expanduser().resolve()


def _read_toml(cfg_path: Path) -> dict[str, Any]:
    if not cfg_path.exists():
        return {}
    import tomllib

    try:
        return tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e


def load_config(path: Path | None = None) -> AgentConfig:
    """Load agent settings: built-in defaults, then the TOML file, then env vars.

    A missing config file is fine; every setting has a default except the ONI
    and batch locations, which stay empty until something sets them.
    """
    raw = _read_toml(path or default_config_path())

    oni = raw.get("oni", {})
    queue = raw.get("queue", {})
    retention = raw.get("retention", {})
    copy = raw.get("copy", {})

    location = os.getenv("ONI_LOCATION") or oni.get("location", "")
    batch_source = os.getenv("BATCH_SOURCE") or oni.get("batch_source", "")
    capacity = os.getenv("ONI_AGENT_QUEUE_SIZE") or queue.get("capacity", 1000)
    purge_interval_s = os.getenv("ONI_AGENT_PURGE_INTERVAL_S") or queue.get("purge_interval_s", 3600)
    attempts = os.getenv("ONI_AGENT_COPY_ATTEMPTS") or copy.get("attempts", 5)

    return AgentConfig(
        oni=ONIConfig(
            location=_as_dir(location, key="oni.location"),
            batch_source=_as_dir(batch_source, key="oni.batch_source"),
        ),
        queue=QueueConfig(
            capacity=_as_positive_int(capacity, key="queue.capacity"),
            purge_interval_s=_as_float(purge_interval_s, key="queue.purge_interval_s"),
        ),
        retention=RetentionConfig(
            failed_hours=_as_float(retention.get("failed_hours", 24), key="retention.failed_hours"),
            successful_days=_as_float(retention.get("successful_days", 7), key="retention.successful_days"),
            default_days=_as_float(retention.get("default_days", 30), key="retention.default_days"),
        ),
        copy=CopyConfig(
            attempts=_as_positive_int(attempts, key="copy.attempts"),
            delay_s=_as_float(copy.get("delay_s", 1.0), key="copy.delay_s"),
        ),
    )
