"""Content fingerprints for outbound and inbound payloads.

This module provides:
- compute_fingerprint: SHA-256 hash of a serialized payload
- Sha256Codec: default fingerprinting codec used by the dispatcher
"""

from __future__ import annotations

import hashlib


def compute_fingerprint(payload: str | bytes) -> str:
    """Compute the SHA-256 content fingerprint of a payload.

    Args:
        payload: Serialized message (text is encoded as UTF-8).

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class Sha256Codec:
    """Fingerprint-only codec used when the caller has no codec of its own."""

    def fingerprint(self, payload: str | bytes) -> str:
        return compute_fingerprint(payload)
