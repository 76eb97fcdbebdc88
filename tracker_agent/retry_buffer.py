from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, TypeVar

from .model import TelemetrySample, sample_from_wire, sample_to_wire

MAX_FAILED = 1000

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS failed_samples (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  sample_json TEXT NOT NULL,
  created_at TEXT NOT NULL
);
"""

_T = TypeVar("_T")

_CORRUPTION_MARKERS = (
    "database disk image is malformed",
    "malformed database schema",
    "not a database",
    "database corrupt",
)

_ALLOWED_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
_ALLOWED_SYNCHRONOUS = {"OFF", "NORMAL", "FULL", "EXTRA"}
_SIDECAR_SUFFIXES = ("", "-wal", "-shm")


def _pragma_value(name: str, value: str, *, allowed: set[str], default: str) -> str:
    candidate = (value or "").strip().upper()
    if candidate not in allowed:
        print(f"[tracker-buffer] invalid {name}={value!r}; using {default}")
        return default
    return candidate


def _looks_corrupt(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CORRUPTION_MARKERS)


class RetryBuffer:
    """Capped, restart-durable FIFO of samples that failed delivery.

    The scheduler drains it at the start of a cycle and rewrites it only when
    the cycle's delivery fails, so the persisted queue always holds the most
    recent undelivered samples, oldest first, never more than `capacity`.
    """

    def __init__(
        self,
        path: str,
        *,
        capacity: int = MAX_FAILED,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL",
        recover_corruption: bool = True,
    ) -> None:
        self.path = Path(path)
        self.capacity = max(1, int(capacity))
        self.journal_mode = _pragma_value("journal_mode", journal_mode, allowed=_ALLOWED_JOURNAL_MODES, default="WAL")
        self.synchronous = _pragma_value("synchronous", synchronous, allowed=_ALLOWED_SYNCHRONOUS, default="NORMAL")
        self.recover_corruption = bool(recover_corruption)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._create_schema()
        except sqlite3.DatabaseError as exc:
            if not (_looks_corrupt(exc) and self._start_over()):
                raise

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        for pragma, value in (("journal_mode", self.journal_mode), ("synchronous", self.synchronous)):
            conn.execute(f"PRAGMA {pragma}={value}")
        return conn

    def _create_schema(self) -> None:
        with self._open() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()

    def _quarantine_target(self, source: Path, stamp: str) -> Path:
        target = source.with_name(f"{source.name}.corrupt-{stamp}")
        suffix = 0
        while target.exists():
            suffix += 1
            target = source.with_name(f"{source.name}.corrupt-{stamp}-{suffix}")
        return target

    def _start_over(self) -> bool:
        """Move the unreadable database (and its WAL/SHM files) aside; recreate it empty."""

        if not self.recover_corruption:
            return False

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        moved: List[Path] = []
        for suffix in _SIDECAR_SUFFIXES:
            source = self.path.with_name(self.path.name + suffix)
            if not source.exists():
                continue
            target = self._quarantine_target(source, stamp)
            try:
                source.replace(target)
            except OSError as exc:
                print(f"[tracker-buffer] could not move corrupt file {source}: {exc!r}")
                return False
            moved.append(target)

        if moved:
            print(f"[tracker-buffer] corrupt retry buffer moved to {', '.join(map(str, moved))}; starting empty")

        try:
            self._create_schema()
        except sqlite3.Error as exc:
            print(f"[tracker-buffer] could not recreate retry buffer: {exc!r}")
            return False
        return True

    def _run_db(self, fn: Callable[[sqlite3.Connection], _T], *, fallback: _T) -> _T:
        """Run `fn` in a connection; recover once from corruption, else return `fallback`."""

        for attempt in (1, 2):
            try:
                with self._open() as conn:
                    return fn(conn)
            except sqlite3.DatabaseError as exc:
                if attempt == 1 and _looks_corrupt(exc) and self._start_over():
                    continue
                print(f"[tracker-buffer] sqlite error: {exc!r}")
                return fallback
            except sqlite3.Error as exc:
                print(f"[tracker-buffer] sqlite error: {exc!r}")
                return fallback
        return fallback

    @staticmethod
    def _decode_rows(rows: Iterable[tuple[int, str]]) -> List[TelemetrySample]:
        out: List[TelemetrySample] = []
        for seq, sample_json in rows:
            try:
                out.append(sample_from_wire(json.loads(sample_json)))
            except ValueError as exc:
                # json.JSONDecodeError is a ValueError too.
                print(f"[tracker-buffer] dropping undecodable entry seq={seq}: {exc}")
        return out

    def drain(self) -> List[TelemetrySample]:
        """Read and clear the persisted queue in one transaction."""

        def _op(conn: sqlite3.Connection) -> List[TelemetrySample]:
            rows = conn.execute("SELECT seq, sample_json FROM failed_samples ORDER BY seq ASC").fetchall()
            conn.execute("DELETE FROM failed_samples")
            conn.commit()
            return self._decode_rows(rows)

        return self._run_db(_op, fallback=[])

    def peek(self) -> List[TelemetrySample]:
        def _op(conn: sqlite3.Connection) -> List[TelemetrySample]:
            rows = conn.execute("SELECT seq, sample_json FROM failed_samples ORDER BY seq ASC").fetchall()
            return self._decode_rows(rows)

        return self._run_db(_op, fallback=[])

    def store(self, samples: Iterable[TelemetrySample]) -> bool:
        """Replace the queue with the newest `capacity` entries of `samples`."""

        entries = list(samples)
        if len(entries) > self.capacity:
            entries = entries[-self.capacity :]
        created_at = datetime.now(timezone.utc).isoformat()
        rows = [(json.dumps(sample_to_wire(s), separators=(",", ":")), created_at) for s in entries]

        def _op(conn: sqlite3.Connection) -> bool:
            conn.execute("DELETE FROM failed_samples")
            conn.executemany(
                "INSERT INTO failed_samples(sample_json, created_at) VALUES(?,?)",
                rows,
            )
            conn.commit()
            return True

        ok = bool(self._run_db(_op, fallback=False))
        if ok:
            print(f"[tracker-buffer] saving {len(entries)} failed requests")
        return ok

    def clear(self) -> int:
        def _op(conn: sqlite3.Connection) -> int:
            cur = conn.execute("DELETE FROM failed_samples")
            conn.commit()
            return int(cur.rowcount)

        return int(self._run_db(_op, fallback=0))

    def count(self) -> int:
        def _op(conn: sqlite3.Connection) -> int:
            (n,) = conn.execute("SELECT COUNT(*) FROM failed_samples").fetchone()
            return int(n)

        return int(self._run_db(_op, fallback=0))
