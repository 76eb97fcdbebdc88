from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import requests

from .model import DeliveryPayload, payload_to_wire

CLIENT_ID_HEADER = "CF-Access-Client-Id"
CLIENT_SECRET_HEADER = "CF-Access-Client-Secret"

_BODY_LOG_LIMIT = 1000


@dataclass(frozen=True)
class DeliverySuccess:
    status_code: int
    accepted: int
    backlog_acknowledged: int

    ok = True


@dataclass(frozen=True)
class DeliveryFailure:
    """Why a POST failed. `body` is kept for diagnostics only."""

    status_code: Optional[int]
    body: Optional[str]
    error: str

    ok = False


DeliveryResult = Union[DeliverySuccess, DeliveryFailure]


def build_headers(credential_id: str, credential_secret: str) -> Dict[str, str]:
    return {
        CLIENT_ID_HEADER: credential_id,
        CLIENT_SECRET_HEADER: credential_secret,
        "Content-Type": "application/json",
    }


class DeliveryClient:
    """POST one payload to the collector and classify the outcome.

    No retries happen here; a failed payload goes back to the retry buffer and
    rides along with the next cycle.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout_s: float = 15.0,
        log_payloads: bool = False,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout_s = float(timeout_s)
        self.log_payloads = bool(log_payloads)

    def send(
        self,
        endpoint: str,
        payload: DeliveryPayload,
        credential_id: str,
        credential_secret: str,
    ) -> DeliveryResult:
        body: List[Dict[str, Any]] = payload_to_wire(payload.samples)
        data = json.dumps(body, separators=(",", ":"))
        if self.log_payloads:
            print(f"[tracker-agent] JSON request: {data}")

        try:
            resp = self.session.post(
                endpoint,
                headers=build_headers(credential_id, credential_secret),
                data=data.encode("utf-8"),
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            print(f"[tracker-agent] error sending request: {exc!r}")
            return DeliveryFailure(status_code=None, body=None, error=repr(exc))

        text = resp.text or ""
        if not 200 <= resp.status_code < 300:
            print(f"[tracker-agent] error sending request: HTTP {resp.status_code}")
            if text:
                print(f"[tracker-agent] response body: {text[:_BODY_LOG_LIMIT]}")
            return DeliveryFailure(
                status_code=resp.status_code,
                body=text or None,
                error=f"HTTP {resp.status_code}",
            )

        if text.strip():
            try:
                json.loads(text)
            except ValueError:
                print(f"[tracker-agent] unparseable response body: {text[:_BODY_LOG_LIMIT]}")
                return DeliveryFailure(
                    status_code=resp.status_code,
                    body=text,
                    error="unparseable response body",
                )

        if payload.pending:
            print(f"[tracker-agent] successfully sent {len(payload.pending)} failed requests")
        return DeliverySuccess(
            status_code=resp.status_code,
            accepted=len(payload),
            backlog_acknowledged=len(payload.pending),
        )

    def close(self) -> None:
        self.session.close()
