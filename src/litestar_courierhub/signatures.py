"""Webhook signing and per-carrier verification strategies."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

SIGNATURE_PREFIX = "sha256="


def compute_hmac(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``X-Webhook-Signature`` value for an outbound body."""
    return SIGNATURE_PREFIX + compute_hmac(body, secret)


def verify_payload_signature(body: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest(
        sign_payload(body, secret).encode(), signature.encode()
    )


def generate_secret() -> str:
    return "whsec_" + secrets.token_hex(24)


def _lower(headers: Mapping[str, str]) -> dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


@runtime_checkable
class WebhookVerifier(Protocol):
    """Checks that an inbound carrier webhook is authentic."""

    requires_secret: bool

    def verify(
        self, body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool: ...


class NoSignature:
    """For carriers that do not sign their callbacks."""

    requires_secret = False

    def verify(
        self, body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        return True


class SharedTokenHeader:
    """Carrier echoes a configured token in a request header."""

    requires_secret = True

    def __init__(self, header: str) -> None:
        self.header = header.lower()

    def verify(
        self, body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        provided = _lower(headers).get(self.header, "")
        return hmac.compare_digest(provided.encode(), secret.encode())


class HmacSha256Header:
    """Hex HMAC-SHA256 of the raw body in a request header."""

    requires_secret = True

    def __init__(self, header: str, prefix: str = "") -> None:
        self.header = header.lower()
        self.prefix = prefix

    def verify(
        self, body: bytes, headers: Mapping[str, str], secret: str
    ) -> bool:
        provided = _lower(headers).get(self.header, "")
        if self.prefix:
            if not provided.startswith(self.prefix):
                return False
            provided = provided[len(self.prefix) :]
        return hmac.compare_digest(
            provided.lower().encode(), compute_hmac(body, secret).encode()
        )
