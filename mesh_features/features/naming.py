"""
Stable feature ids.

A feature id depends only on the feature kind and its member triangles:
the sorted members are written as a run-length range string and hashed.

    >>> encode_ranges([0, 1, 2, 3, 7, 9, 10])
    '0-3,7,9-10'
    >>> feature_id("plane", [0, 1, 2, 3, 7, 9, 10])  # doctest: +SKIP
    'plane_5c1f...'

Detecting the same geometry twice, in any process, yields the same ids.
"""

import hashlib
from typing import Iterable, List

ID_DIGEST_SIZE = 8


def encode_ranges(indices: Iterable[int]) -> str:
    """Canonical run-length encoding of a set of non-negative integers.

    Duplicates are ignored and order does not matter.
    """
    values = sorted({int(i) for i in indices})
    if not values:
        return ""

    parts: List[str] = []
    start = prev = values[0]
    for value in values[1:]:
        if value == prev + 1:
            prev = value
            continue
        parts.append(str(start) if start == prev else f"{start}-{prev}")
        start = prev = value
    parts.append(str(start) if start == prev else f"{start}-{prev}")
    return ",".join(parts)


def decode_ranges(encoded: str) -> List[int]:
    """Inverse of encode_ranges.

    Raises:
        ValueError: If the string is not a valid range list
    """
    result: List[int] = []
    if not encoded.strip():
        return result
    for part in encoded.split(","):
        part = part.strip()
        if "-" in part:
            first, last = part.split("-", 1)
            lo, hi = int(first), int(last)
            if hi < lo:
                raise ValueError(f"Descending range in {encoded!r}: {part}")
            result.extend(range(lo, hi + 1))
        else:
            result.append(int(part))
    return result


def feature_id(kind: str, triangles: Iterable[int]) -> str:
    """Id of the form ``<kind>_<16 hex digits>`` for a member set."""
    digest = hashlib.blake2b(
        encode_ranges(triangles).encode("ascii"),
        digest_size=ID_DIGEST_SIZE,
        person=kind.encode("ascii")[:16],
    )
    return f"{kind}_{digest.hexdigest()}"
