"""GitHub webhook signature verification (``X-Hub-Signature-256``)."""

from __future__ import annotations

import hashlib
import hmac

_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{_PREFIX}{digest}"


def verify_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Constant-time check of ``sha256=<hex>`` over the raw request body.

    A missing or malformed header, another algorithm, or an empty secret all
    verify as False.
    """
    if not secret or not header or not header.startswith(_PREFIX):
        return False
    provided = header[len(_PREFIX):]
    if len(provided) != 64:
        return False
    return hmac.compare_digest(compute_signature(body, secret), f"{_PREFIX}{provided.lower()}")
