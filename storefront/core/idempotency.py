"""
Idempotency helpers for payment and order requests.

Order submission is retried on transient failure, so every POST carries a
key derived from the request body; the backend can then drop duplicates.
"""
from __future__ import annotations

import hashlib
import json
import uuid
from typing import Any


def normalize_idempotency_key(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def build_request_hash(payload: dict[str, Any]) -> str:
    """Generate a stable hash for a request payload."""
    serialized = json.dumps(
        payload,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


def idempotency_headers(key: str | None, header: str) -> dict[str, str]:
    normalized = normalize_idempotency_key(key)
    return {header: normalized} if normalized else {}
