"""Content hashing used to detect changed blocks."""

from __future__ import annotations

import hashlib

__all__ = ["EMPTY_HASH", "HASH_LENGTH", "hash_block"]

EMPTY_HASH = "0"
HASH_LENGTH = 16


def hash_block(text: str) -> str:
    """Return a short, deterministic digest of ``text``.

    Used for change detection only; a truncated SHA-1 keeps collisions out of
    practical reach for per-field block counts.
    """

    if not text:
        return EMPTY_HASH
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]
