"""Shared-secret checks for the operations API."""

from __future__ import annotations

import hmac


def verify_api_key(provided: str | None, expected: str) -> bool:
    """Compare a presented API key against the configured one in constant time."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
