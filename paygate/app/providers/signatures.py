"""Webhook signature checks. Every comparison is constant-time."""
from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional


def _digest(secret: str, body: bytes, algorithm) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, algorithm).digest()


def verify_hmac_sha512_hex(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = _digest(secret, body, hashlib.sha512).hex()
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_hmac_sha256_base64(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = base64.b64encode(_digest(secret, body, hashlib.sha256)).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def verify_static_hash(expected: str, provided: Optional[str]) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


__all__ = ["verify_hmac_sha256_base64", "verify_hmac_sha512_hex", "verify_static_hash"]
