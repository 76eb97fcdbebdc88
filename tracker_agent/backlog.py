from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from .agent import DEFAULT_BUFFER_PATH, DEFAULT_HTTP_TIMEOUT_S, load_env
from .config import build_config_provider_from_env
from .delivery import DeliveryClient, DeliveryFailure
from .model import DeliveryPayload, TelemetrySample, payload_to_wire
from .retry_buffer import RetryBuffer


def _export(samples: List[TelemetrySample], output: Optional[str]) -> None:
    blob = json.dumps(payload_to_wire(samples), indent=2)
    if output is None or output == "-":
        sys.stdout.write(blob + "\n")
        return
    Path(output).expanduser().write_text(blob + "\n", encoding="utf-8")


def flush_backlog(
    buf: RetryBuffer,
    client: DeliveryClient,
    *,
    endpoint: str,
    credential_id: str,
    credential_secret: str,
) -> bool:
    """Send every buffered entry in one request; entries stay buffered on failure."""

    entries = buf.drain()
    if not entries:
        return True

    payload = DeliveryPayload(pending=tuple(entries[:-1]), fresh=entries[-1])
    result = client.send(endpoint, payload, credential_id, credential_secret)
    if isinstance(result, DeliveryFailure):
        buf.store(entries)
        return False
    return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_env()

    parser = argparse.ArgumentParser(description="Inspect or flush the tracker retry buffer")
    parser.add_argument(
        "--buffer-db",
        default=os.getenv("TRACKER_BUFFER_PATH", DEFAULT_BUFFER_PATH),
        help="Path to the local SQLite retry buffer",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("count", help="Print the number of buffered entries")

    export = sub.add_parser("export", help="Write buffered entries as a JSON array")
    export.add_argument("--output", "-o", default=None, help="Output file (default: stdout)")

    flush = sub.add_parser("flush", help="Send buffered entries now with the current config")
    flush.add_argument("--endpoint", default=None, help="Override the configured endpoint")
    flush.add_argument("--timeout-s", type=float, default=DEFAULT_HTTP_TIMEOUT_S, help="HTTP timeout")

    clear = sub.add_parser("clear", help="Delete every buffered entry")
    clear.add_argument("--yes", action="store_true", help="Required to actually delete")

    args = parser.parse_args(argv)

    if not Path(args.buffer_db).expanduser().exists():
        print(f"[backlog] buffer={args.buffer_db} does not exist", file=sys.stderr)
        return 1

    buf = RetryBuffer(str(Path(args.buffer_db).expanduser()))

    if args.command == "count":
        print(buf.count())
        return 0

    if args.command == "export":
        samples = buf.peek()
        _export(samples, args.output)
        print(f"[backlog] exported {len(samples)} entries", file=sys.stderr)
        return 0

    if args.command == "clear":
        if not args.yes:
            print("[backlog] refusing to clear without --yes", file=sys.stderr)
            return 2
        print(f"[backlog] cleared {buf.clear()} entries")
        return 0

    config = build_config_provider_from_env().load()
    endpoint = args.endpoint or config.endpoint
    if not endpoint:
        print("[backlog] no endpoint configured; pass --endpoint", file=sys.stderr)
        return 2

    pending = buf.count()
    if pending == 0:
        print("[backlog] nothing to flush")
        return 0

    client = DeliveryClient(requests.Session(), timeout_s=args.timeout_s)
    try:
        ok = flush_backlog(
            buf,
            client,
            endpoint=endpoint,
            credential_id=config.credential_id,
            credential_secret=config.credential_secret,
        )
    finally:
        client.close()

    if not ok:
        print(f"[backlog] flush failed; {buf.count()} entries kept", file=sys.stderr)
        return 1
    print(f"[backlog] flushed {pending} entries to {endpoint}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
