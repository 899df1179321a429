"""Process-wide source of cryptographically secure random bytes.

The envelope codec draws its per-encode salt and IV from here. The default
source wraps :mod:`secrets` (the OS CSPRNG), which is safe to call from many
threads at once. Tests swap in a deterministic source with
:func:`set_random_source` or pass ``rng=`` to the codec directly.
"""
from __future__ import annotations

import secrets
from typing import Protocol


class RandomSource(Protocol):
    def random_bytes(self, size: int) -> bytes: ...


class SystemRandomSource:
    """Random bytes from the operating system CSPRNG."""

    def random_bytes(self, size: int) -> bytes:
        if size < 0:
            raise ValueError("size must be non-negative")
        return secrets.token_bytes(size)


# module-level default random source
_default_source: RandomSource = SystemRandomSource()


def get_random_source() -> RandomSource:
    return _default_source


def set_random_source(source: RandomSource | None) -> RandomSource:
    """Install ``source`` as the process default and return the previous one.

    Passing ``None`` restores the system source.
    """
    global _default_source
    previous = _default_source
    _default_source = source if source is not None else SystemRandomSource()
    return previous


def random_bytes(size: int) -> bytes:
    return get_random_source().random_bytes(size)
