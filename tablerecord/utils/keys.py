"""
Surrogate primary key generation for inserted rows.

Keys combine a time-based UUID with random hex from ``secrets`` and are cut
to a fixed length (40 characters unless configured otherwise). Uniqueness is
left to the table's primary key constraint.
"""
from __future__ import annotations

import secrets
import uuid
from typing import Callable, Optional

from tablerecord.utils.settings import key_length

KeyGenerator = Callable[[], str]


def generate_key(length: Optional[int] = None) -> str:
    """Return a hex surrogate key of exactly ``length`` characters."""
    size = length or key_length()
    if size <= 0:
        raise ValueError(f"Key length must be positive, got {size}")
    key = uuid.uuid1().hex
    if len(key) < size:
        # token_hex yields two chars per byte
        key += secrets.token_hex((size - len(key) + 1) // 2)
    return key[:size]


def fixed_length_generator(length: int) -> KeyGenerator:
    """Return a zero-argument generator bound to ``length``."""
    def _generate() -> str:
        return generate_key(length)
    return _generate
