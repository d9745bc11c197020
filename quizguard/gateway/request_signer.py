"""Request Signer: HMAC-SHA256 signatures with replay protection.

Signature format: "<unix timestamp>.<hex hmac>"

The MAC covers the canonical JSON serialization (sorted keys, compact
separators) of {service, payload, timestamp}, so reordering payload keys
does not change the signature while any value change does.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from quizguard.core.config import settings
from quizguard.core.exceptions import ReplayWindowExceeded
from quizguard.gateway.types import SignedRequestMetadata

logger = logging.getLogger(__name__)

REPLAY_WINDOW = 300  # seconds
MAX_CLOCK_SKEW = 60  # seconds a timestamp may lie in the future


def _canonical(service: str, payload: Any, timestamp: int) -> bytes:
    body = {"service": service, "payload": payload, "timestamp": timestamp}
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _split(signature: str) -> tuple[int, str] | None:
    """Parse "<timestamp>.<hex>"; None if malformed."""
    if not isinstance(signature, str):
        return None
    ts_part, sep, digest = signature.partition(".")
    if not sep or not ts_part.isdigit() or not digest:
        return None
    return int(ts_part), digest


class RequestSigner:
    """Signs outbound provider requests and verifies signatures."""

    def __init__(
        self,
        replay_window: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.replay_window = replay_window if replay_window is not None else settings.replay_window_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def create_request_metadata(self, service: str) -> SignedRequestMetadata:
        return SignedRequestMetadata(service=service, timestamp=self.now())

    def sign_request(self, service: str, payload: Any, secret: str, timestamp: int | None = None) -> str:
        if timestamp is None:
            timestamp = self.now()
        digest = hmac.new(secret.encode("utf-8"), _canonical(service, payload, timestamp), hashlib.sha256)
        return f"{timestamp}.{digest.hexdigest()}"

    def _within_window(self, timestamp: int) -> bool:
        age = self.now() - timestamp
        return -MAX_CLOCK_SKEW <= age <= self.replay_window

    def verify_signature(self, service: str, payload: Any, signature: str, secret: str) -> bool:
        """True only for an unexpired signature made with this secret over this payload.

        Every failure mode returns False; callers cannot tell them apart.
        """
        parsed = _split(signature)
        if parsed is None or not secret:
            return False
        timestamp, _ = parsed

        expected = self.sign_request(service, payload, secret, timestamp=timestamp)
        matches = hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
        return matches and self._within_window(timestamp)

    def check_replay_window(self, signature: str) -> None:
        """Raise ReplayWindowExceeded unless the embedded timestamp is fresh."""
        parsed = _split(signature)
        if parsed is None:
            raise ReplayWindowExceeded("Request signature carries no valid timestamp")
        timestamp, _ = parsed
        if not self._within_window(timestamp):
            logger.warning("Rejected signature outside replay window (age %ds)", self.now() - timestamp)
            raise ReplayWindowExceeded(
                f"Request timestamp is outside the {int(self.replay_window)}s replay window"
            )

    @staticmethod
    def build_headers(metadata: SignedRequestMetadata) -> dict[str, str]:
        return {
            "X-Request-ID": metadata.request_id,
            "X-Request-Timestamp": str(metadata.timestamp),
            "X-Request-Signature": metadata.signature,
        }
