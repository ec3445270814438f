"""
Deterministic hashing utilities.

The control plane derives logical entity IDs from human-supplied names, so
the hash must be stable across processes, hosts and Python versions
(``hash()`` is salted per process and therefore unusable).

Examples:
    >>> compute_hash("prod") == compute_hash("prod")
    True
    >>> len(compute_hash("prod", length=8))
    8
"""

import hashlib
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Values are converted to strings, joined with ``|`` and hashed with
    SHA-256. The hash is order-dependent: ``(a, b)`` and ``(b, a)`` differ.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]
