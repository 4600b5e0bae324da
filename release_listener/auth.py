"""Webhook signature signing and verification.

GitHub signs each delivery with HMAC-SHA256 over the raw request body and
sends the digest as ``X-Hub-Signature-256: sha256=<hex>``.
"""

from __future__ import annotations

import hashlib
import hmac
import re

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="

_SIGNATURE_RE = re.compile(r"^sha256=[0-9a-fA-F]{64}$")


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature of *body* under *secret*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def is_well_formed_signature(signature: str) -> bool:
    """Check the header has the ``sha256=<64 hex digits>`` shape."""
    return bool(_SIGNATURE_RE.match(signature))


def verify_signature(body: bytes, secret: str, signature: str | None) -> bool:
    """Verify *signature* was produced for *body* with *secret*.

    A missing or malformed signature, or an empty secret, never verifies.
    Hex digits are matched case-insensitively; digests are compared in
    constant time.
    """
    if not signature or not secret:
        return False
    if not is_well_formed_signature(signature):
        return False

    expected = sign_payload(body, secret)
    return hmac.compare_digest(signature.lower().encode("ascii"), expected.encode("ascii"))
