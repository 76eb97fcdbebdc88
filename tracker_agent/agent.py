from __future__ import annotations

import os
import signal
from pathlib import Path
from typing import Any, Optional

import requests
from dotenv import load_dotenv

from .assembler import TelemetryAssembler
from .battery import BatteryReader
from .config import (
    ConfigError,
    ConfigProvider,
    build_config_provider_from_env,
    parse_bool_env,
    parse_optional_timeout_env,
    parse_positive_float_env,
)
from .delivery import DeliveryClient
from .location import LOCATION_TIMEOUT_S, LocationAcquirer
from .notify import build_failure_signal_from_env
from .retry_buffer import RetryBuffer
from .scheduler import CollectionScheduler
from .sensors import SENSOR_TIMEOUT_S, SensorReader
from .sources import PlatformSources, SourceConfigError, build_sources_from_env

DEFAULT_BUFFER_PATH = "./tracker_buffer.sqlite"
DEFAULT_HTTP_TIMEOUT_S = 15.0


def load_env() -> None:
    # Load working-directory .env (if present), then package-local overrides.
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")


def build_retry_buffer_from_env() -> RetryBuffer:
    return RetryBuffer(
        os.getenv("TRACKER_BUFFER_PATH", DEFAULT_BUFFER_PATH),
        journal_mode=os.getenv("BUFFER_SQLITE_JOURNAL_MODE", "WAL"),
        synchronous=os.getenv("BUFFER_SQLITE_SYNCHRONOUS", "NORMAL"),
        recover_corruption=parse_bool_env("BUFFER_RECOVER_CORRUPTION", default=True),
    )


def build_delivery_client_from_env(session: Optional[requests.Session] = None) -> DeliveryClient:
    return DeliveryClient(
        session,
        timeout_s=parse_positive_float_env("TRACKER_HTTP_TIMEOUT_S", default=DEFAULT_HTTP_TIMEOUT_S),
        log_payloads=parse_bool_env("TRACKER_LOG_PAYLOADS", default=False),
    )


def build_assembler(
    sources: PlatformSources,
    *,
    location_timeout_s: float = LOCATION_TIMEOUT_S,
    sensor_timeout_s: Optional[float] = SENSOR_TIMEOUT_S,
) -> TelemetryAssembler:
    return TelemetryAssembler(
        location=LocationAcquirer(sources.location, timeout_s=location_timeout_s),
        battery=BatteryReader(sources.battery),
        sensors=SensorReader(sources.sensors, timeout_s=sensor_timeout_s),
    )


def build_scheduler_from_env(
    *,
    config_provider: Optional[ConfigProvider] = None,
    session: Optional[requests.Session] = None,
) -> tuple[CollectionScheduler, dict[str, Any]]:
    """Wire a scheduler from TRACKER_* settings.

    Returns the scheduler plus a summary of the choices made, for the startup
    line. Invalid settings raise SystemExit.
    """

    provider = config_provider or build_config_provider_from_env()
    initial = provider.load()

    try:
        sources = build_sources_from_env(default_seed=initial.name or "tracker-demo")
    except SourceConfigError as exc:
        raise SystemExit(f"[tracker-agent] invalid source config: {exc}") from exc

    try:
        assembler = build_assembler(
            sources,
            location_timeout_s=parse_positive_float_env("TRACKER_LOCATION_TIMEOUT_S", default=LOCATION_TIMEOUT_S),
            sensor_timeout_s=parse_optional_timeout_env("TRACKER_SENSOR_TIMEOUT_S", default=SENSOR_TIMEOUT_S),
        )
        retry_buffer = build_retry_buffer_from_env()
        delivery = build_delivery_client_from_env(session)
    except ConfigError as exc:
        raise SystemExit(f"[tracker-agent] invalid config: {exc}") from exc

    scheduler = CollectionScheduler(
        config_provider=provider,
        retry_buffer=retry_buffer,
        assembler=assembler,
        delivery=delivery,
        on_delivery_failure=build_failure_signal_from_env(session_name=initial.name),
    )
    summary = {
        "name": initial.name or "-",
        "endpoint": initial.endpoint or "(unset)",
        "interval_s": initial.interval_s,
        "buffer": str(retry_buffer.path),
        "backlog": retry_buffer.count(),
        "sources": sources.backend,
        "store": getattr(provider, "path", "environment"),
    }
    return scheduler, summary


def main() -> None:
    load_env()

    scheduler, summary = build_scheduler_from_env()
    print(
        "[tracker-agent] name=%s endpoint=%s interval=%ss buffer=%s backlog=%s sources=%s store=%s"
        % (
            summary["name"],
            summary["endpoint"],
            summary["interval_s"],
            summary["buffer"],
            summary["backlog"],
            summary["sources"],
            summary["store"],
        )
    )

    def _on_sigterm(signum: int, frame: Any) -> None:
        _ = frame
        print(f"[tracker-agent] received signal {signum}; stopping")
        scheduler.cancel.cancel()

    signal.signal(signal.SIGTERM, _on_sigterm)

    thread = scheduler.start()
    try:
        while thread.is_alive():
            thread.join(timeout=0.5)
    except KeyboardInterrupt:
        print("[tracker-agent] interrupted; stopping")
        scheduler.stop(timeout_s=5.0)
    finally:
        scheduler.delivery.close()


if __name__ == "__main__":
    main()
