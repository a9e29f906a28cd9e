"""Canonical serialization helpers for wire bodies and JWS segments."""

from __future__ import annotations

import base64
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize *obj* for a broker message body or a JWS payload segment.

    Keys are sorted and separators carry no whitespace, so two equal
    payloads publish identical bodies and sign identical claims.  Non-ASCII
    text is escaped, which keeps the result valid for any consumer that
    decodes the body as ASCII.
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding, as used by JWS segments."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    """Inverse of ``b64url_encode``; tolerates missing padding."""
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))
