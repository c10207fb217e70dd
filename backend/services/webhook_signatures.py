"""
HubSpot webhook signature verification.

The webhook route depends on the SignatureVerifier protocol only, so the
scheme can be swapped (or stubbed in tests) without touching dispatch.

HubSpot's schemes:
- v3: X-HubSpot-Signature-v3 = base64(HMAC-SHA256(secret, method + uri + body + timestamp)),
  with X-HubSpot-Request-Timestamp (milliseconds) no older than 5 minutes
- v2: X-HubSpot-Signature = hex(SHA-256(secret + method + uri + body))
- v1: X-HubSpot-Signature = hex(SHA-256(secret + body))
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import Callable, Mapping, Optional, Protocol
from urllib.parse import unquote

from config import settings

logger = logging.getLogger(__name__)


class SignatureVerifier(Protocol):
    def verify(self, method: str, url: str, body: bytes, headers: Mapping[str, str]) -> bool:
        ...


class AllowAllVerifier:
    """Accepts every request. Only used when no client secret is configured."""

    def verify(self, method: str, url: str, body: bytes, headers: Mapping[str, str]) -> bool:
        logger.warning(
            "[hubspot_webhook] HUBSPOT_CLIENT_SECRET is empty - payload accepted without "
            "signature validation. Set the secret before deploying to production."
        )
        return True


class HubSpotSignatureVerifier:
    """Verifies HubSpot v3 signatures, falling back to v1/v2 when v3 is absent."""

    def __init__(
        self,
        client_secret: str,
        max_age_seconds: int = 300,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not client_secret:
            raise ValueError("client_secret is required")
        self._secret = client_secret.encode("utf-8")
        self._max_age_seconds = max_age_seconds
        self._clock = clock or time.time

    def verify(self, method: str, url: str, body: bytes, headers: Mapping[str, str]) -> bool:
        lowered = {key.lower(): value for key, value in headers.items()}

        signature_v3 = lowered.get("x-hubspot-signature-v3")
        if signature_v3:
            return self._verify_v3(method, url, body, signature_v3, lowered.get("x-hubspot-request-timestamp", ""))

        signature = lowered.get("x-hubspot-signature")
        if not signature:
            logger.warning("[hubspot_webhook] Missing signature header")
            return False

        version = lowered.get("x-hubspot-signature-version", "v1").lower()
        if version == "v2":
            source = self._secret + method.upper().encode("utf-8") + url.encode("utf-8") + body
        else:
            source = self._secret + body
        expected = hashlib.sha256(source).hexdigest()
        return hmac.compare_digest(expected, signature.lower())

    def _verify_v3(self, method: str, url: str, body: bytes, signature: str, timestamp: str) -> bool:
        # Check timestamp to prevent replay attacks
        try:
            request_time_ms = int(timestamp)
        except ValueError:
            logger.warning("[hubspot_webhook] Invalid timestamp: %s", timestamp)
            return False
        age = abs(self._clock() - request_time_ms / 1000)
        if age > self._max_age_seconds:
            logger.warning("[hubspot_webhook] Request timestamp too old: %s", timestamp)
            return False

        source = (
            method.upper().encode("utf-8")
            + unquote(url).encode("utf-8")
            + body
            + timestamp.encode("utf-8")
        )
        expected = base64.b64encode(
            hmac.new(self._secret, source, hashlib.sha256).digest()
        ).decode("utf-8")
        return hmac.compare_digest(expected, signature)


def get_signature_verifier() -> SignatureVerifier:
    """Verifier for the configured HubSpot app."""
    if not settings.HUBSPOT_CLIENT_SECRET:
        return AllowAllVerifier()
    return HubSpotSignatureVerifier(
        settings.HUBSPOT_CLIENT_SECRET,
        max_age_seconds=settings.HUBSPOT_SIGNATURE_MAX_AGE_SECONDS,
    )
