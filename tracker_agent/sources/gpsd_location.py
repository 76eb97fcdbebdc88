from __future__ import annotations

import json
import socket
import threading
import time
from typing import Any, Callable, Mapping, Optional

from ..location import GPS_PROVIDER, LocationFix, LocationListener, ProviderUnavailableError
from .base import ListenerRegistry

GPSD_DEFAULT_HOST = "127.0.0.1"
GPSD_DEFAULT_PORT = 2947
WATCH_COMMAND = b'?WATCH={"enable":true,"json":true};\n'

SocketFactory = Callable[[tuple[str, int], float], socket.socket]


def _opt_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_tpv(report: Mapping[str, Any]) -> Optional[LocationFix]:
    """Turn a gpsd TPV report into a fix; None for anything without a 2D fix."""

    if report.get("class") != "TPV":
        return None
    mode = report.get("mode")
    if not isinstance(mode, int) or mode < 2:
        return None
    lat = _opt_float(report.get("lat"))
    lon = _opt_float(report.get("lon"))
    if lat is None or lon is None:
        return None

    accuracy = _opt_float(report.get("eph"))
    if accuracy is None:
        epx = _opt_float(report.get("epx"))
        epy = _opt_float(report.get("epy"))
        if epx is not None and epy is not None:
            accuracy = max(epx, epy)

    altitude = _opt_float(report.get("altHAE"))
    if altitude is None:
        altitude = _opt_float(report.get("alt"))

    return LocationFix(
        latitude=lat,
        longitude=lon,
        accuracy=accuracy,
        provider=GPS_PROVIDER,
        speed=_opt_float(report.get("speed")),
        altitude=altitude,
        bearing=_opt_float(report.get("track")),
    )


class _GpsdWatcher:
    def __init__(
        self,
        sock: socket.socket,
        listener: LocationListener,
        *,
        min_interval_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sock = sock
        self._listener = listener
        self._min_interval_s = max(0.0, min_interval_s)
        self._clock = clock
        self._last_delivery: Optional[float] = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="gpsd-watch", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._sock.close()
        except OSError:
            pass
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    def _handle_line(self, line: bytes) -> None:
        try:
            report = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return
        if not isinstance(report, dict):
            return
        fix = parse_tpv(report)
        if fix is None:
            return
        now = self._clock()
        if self._last_delivery is not None and now - self._last_delivery < self._min_interval_s:
            return
        self._last_delivery = now
        try:
            self._listener(fix)
        except Exception as exc:
            print(f"[tracker-location] gpsd listener raised: {type(exc).__name__}: {exc}")

    def _run(self) -> None:
        buf = b""
        self._sock.settimeout(0.5)
        while not self._stop.is_set():
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._stop.is_set():
                    print(f"[tracker-location] gpsd connection lost: {exc}")
                return
            if not chunk:
                if not self._stop.is_set():
                    print("[tracker-location] gpsd closed the connection")
                return
            buf += chunk
            while b"\n" in buf:
                line, buf = buf.split(b"\n", 1)
                if line.strip():
                    self._handle_line(line)


class GpsdLocationSource:
    """Location updates from a local gpsd daemon.

    gpsd only knows about satellite receivers, so every provider other than
    "gps" is reported unavailable and the acquirer moves on.
    """

    supports_fused = False

    def __init__(
        self,
        host: str = GPSD_DEFAULT_HOST,
        port: int = GPSD_DEFAULT_PORT,
        *,
        connect_timeout_s: float = 2.0,
        socket_factory: SocketFactory = socket.create_connection,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout_s = connect_timeout_s
        self._socket_factory = socket_factory
        self._registry = ListenerRegistry()

    def request_location_updates(
        self,
        provider: str,
        min_time_ms: int,
        min_distance_m: float,
        listener: LocationListener,
    ) -> None:
        _ = min_distance_m
        if provider != GPS_PROVIDER:
            raise ProviderUnavailableError(f"gpsd does not serve provider '{provider}'")
        try:
            sock = self._socket_factory((self.host, self.port), self.connect_timeout_s)
        except OSError as exc:
            raise ProviderUnavailableError(f"gpsd unreachable at {self.host}:{self.port}: {exc}") from exc
        try:
            sock.sendall(WATCH_COMMAND)
        except OSError as exc:
            sock.close()
            raise ProviderUnavailableError(f"gpsd rejected WATCH at {self.host}:{self.port}: {exc}") from exc

        watcher = _GpsdWatcher(sock, listener, min_interval_s=min_time_ms / 1000.0)
        self._registry.add(listener, watcher)
        watcher.start()

    def remove_updates(self, listener: LocationListener) -> None:
        self._registry.remove(listener)
