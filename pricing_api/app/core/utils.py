"""
Utility functions.
"""

import hashlib
import json
from typing import Any, List


def chunked(lst: List[Any], size: int):
    """
    Split list into chunks of specified size.
    """
    for i in range(0, len(lst), size):
        yield lst[i:i + size]


def stable_digest(*parts: Any) -> str:
    """
    SHA-256 of JSON-serializable parts, independent of dict key order.
    Used to derive idempotency keys from a submission.
    """
    payload = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode()).hexdigest()
