"""HMAC-signed, expiring tokens.

A token is ``base64url(json(envelope)) + "." + base64url(hmac_sha256(secret, body))``
where the envelope is the payload plus integer ``iat``/``exp`` unix seconds.
Verification failures of any kind come back as ``None``.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class Signer:
    def __init__(self, secret: str, clock: Callable[[], float] = time.time) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._key = secret.encode("utf-8")
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def _mac(self, body: str) -> str:
        digest = hmac.new(self._key, body.encode("ascii"), hashlib.sha256).digest()
        return b64url_encode(digest)

    def sign(self, payload: Dict[str, Any], ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        now = self.now()
        envelope = {**payload, "iat": now, "exp": now + ttl_seconds}
        body = b64url_encode(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._mac(body)}"

    def verify(self, token: str) -> Optional[Dict[str, Any]]:
        body, _, signature = (token or "").partition(".")
        if not body or not signature:
            return None
        try:
            expected = self._mac(body)
        except UnicodeEncodeError:
            return None
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            return None

        try:
            envelope = json.loads(b64url_decode(body).decode("utf-8"))
        except (binascii.Error, ValueError):
            return None
        if not isinstance(envelope, dict):
            return None

        exp = envelope.get("exp")
        if not isinstance(exp, int) or isinstance(exp, bool):
            return None
        if exp <= self.now():
            return None
        return envelope
