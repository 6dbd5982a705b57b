"""
Webhook signature verification.

Header format:  sha256={hex(HMAC-SHA256(secret, raw_body))}
The "sha256=" prefix is optional. Verification always runs on the exact
bytes received, before any JSON parsing.

No secret configured → every payload is accepted. Local development only.
"""

import hashlib
import hmac
from dataclasses import dataclass

SIGNATURE_HEADERS = ("X-Hub-Signature", "X-Hub-Signature-256", "X-Signature")

_PREFIX = "sha256="
_DIGEST_BYTES = hashlib.sha256().digest_size


@dataclass(frozen=True)
class Verdict:
    authentic: bool
    reason: str | None = None
    skipped: bool = False


def _digest(body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def sign_payload(body: bytes, secret: str) -> str:
    """Header value a sender would attach to `body`."""
    return _PREFIX + _digest(body, secret).hex()


def verify_signature(body: bytes, signature_header: str | None, secret: str | None) -> Verdict:
    if not secret:
        return Verdict(authentic=True, skipped=True)

    if not signature_header:
        return Verdict(authentic=False, reason="missing_signature")

    received = signature_header.strip()
    if received[: len(_PREFIX)].lower() == _PREFIX:
        received = received[len(_PREFIX):].strip()

    try:
        received_bytes = bytes.fromhex(received)
    except ValueError:
        return Verdict(authentic=False, reason="invalid_signature_format")
    if len(received_bytes) != _DIGEST_BYTES:
        return Verdict(authentic=False, reason="invalid_signature_format")

    if not hmac.compare_digest(received_bytes, _digest(body, secret)):
        return Verdict(authentic=False, reason="invalid_signature")

    return Verdict(authentic=True)
