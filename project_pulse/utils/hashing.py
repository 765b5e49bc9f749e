"""
Stable hashing helpers for dedupe keys.

Keys must be identical across runs and machines, so inputs are serialised
canonically (sorted keys, no whitespace) before hashing.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def sha1_text(text: str) -> str:
    """Hex SHA-1 of a UTF-8 string."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def canonical_json(data: Any) -> str:
    """Serialise ``data`` deterministically (sorted keys, compact separators)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def sha1_of(*parts: Any) -> str:
    """Hex SHA-1 of the canonical JSON array of ``parts``."""
    return sha1_text(canonical_json(list(parts)))
