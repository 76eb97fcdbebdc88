from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

import yaml

DEFAULT_INTERVAL_S = 60

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}

# store key -> environment fallback
_ENV_KEYS = {
    "endpoint": "TRACKER_ENDPOINT",
    "name": "TRACKER_NAME",
    "interval": "TRACKER_INTERVAL_S",
    "credential_id": "TRACKER_CLIENT_ID",
    "credential_secret": "TRACKER_CLIENT_SECRET",
}


class ConfigError(ValueError):
    """Raised when process-level configuration is invalid."""


@dataclass(frozen=True)
class TrackerConfig:
    endpoint: str
    name: str
    interval_s: int
    credential_id: str
    credential_secret: str


class ConfigProvider(Protocol):
    def load(self) -> TrackerConfig: ...


def _coerce_interval(raw: Any, *, origin: str) -> int:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return DEFAULT_INTERVAL_S
    value: Optional[int] = None
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, int):
        value = raw
    elif isinstance(raw, float) and raw.is_integer():
        value = int(raw)
    elif isinstance(raw, str):
        try:
            value = int(raw.strip())
        except ValueError:
            value = None
    if value is None or value < 1:
        print(f"[tracker-agent] invalid interval={raw!r} in {origin}; using {DEFAULT_INTERVAL_S}")
        return DEFAULT_INTERVAL_S
    return value


def _coerce_str(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def config_from_mapping(values: Mapping[str, Any], *, origin: str) -> TrackerConfig:
    return TrackerConfig(
        endpoint=_coerce_str(values.get("endpoint")),
        name=_coerce_str(values.get("name")),
        interval_s=_coerce_interval(values.get("interval"), origin=origin),
        credential_id=_coerce_str(values.get("credential_id")),
        credential_secret=_coerce_str(values.get("credential_secret")),
    )


def _env_values() -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, env_name in _ENV_KEYS.items():
        raw = os.getenv(env_name)
        if raw is not None:
            out[key] = raw
    return out


class EnvConfigProvider:
    """Reads TRACKER_* variables on every load."""

    def load(self) -> TrackerConfig:
        return config_from_mapping(_env_values(), origin="environment")


class YamlConfigStore:
    """Key-value settings file owned by whatever UI edits it.

    The file is re-read on every `load()` so edits apply on the next cycle.
    Keys missing from the file fall back to the environment, then defaults.
    An unreadable file is reported and treated as empty.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._last_error: Optional[str] = None

    def _read(self) -> dict[str, Any]:
        try:
            loaded = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            self._report(f"config store {self.path} not found; using environment")
            return {}
        except (OSError, yaml.YAMLError) as exc:
            self._report(f"failed to read config store {self.path}: {exc}")
            return {}
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            self._report(f"config store {self.path} must be a YAML object")
            return {}
        self._last_error = None
        return loaded

    def _report(self, message: str) -> None:
        if message != self._last_error:
            print(f"[tracker-agent] {message}")
            self._last_error = message

    def load(self) -> TrackerConfig:
        merged = _env_values()
        merged.update({k: v for k, v in self._read().items() if k in _ENV_KEYS})
        return config_from_mapping(merged, origin=str(self.path))


def build_config_provider_from_env() -> ConfigProvider:
    raw = os.getenv("TRACKER_CONFIG_PATH", "").strip()
    if raw:
        return YamlConfigStore(Path(raw).expanduser())
    return EnvConfigProvider()


def parse_bool_env(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    norm = raw.strip().lower()
    if norm in _TRUE_VALUES:
        return True
    if norm in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be one of: {sorted(_TRUE_VALUES | _FALSE_VALUES)}")


def parse_positive_float_env(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number") from exc
    if parsed <= 0:
        raise ConfigError(f"{name} must be > 0")
    return parsed


def parse_optional_timeout_env(name: str, *, default: float) -> Optional[float]:
    """Like parse_positive_float_env, but `0` means no timeout."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number") from exc
    if parsed < 0:
        raise ConfigError(f"{name} must be >= 0")
    if parsed == 0:
        return None
    return parsed
