"""Byte container for secret material that is overwritten before release.

Every value derived from or equal to a secret (master password, derived keys,
IVs, the KGK) is held in a :class:`SecureBuffer`. It is a plain ``bytearray``
so it can be handed to ``cryptography`` without a copy, and it zeroes its
backing memory when wiped, when a ``with`` block exits, or when it is garbage
collected.

Python offers no control over copies the interpreter or a library makes, so
this only covers buffers this package owns. Avoid ``bytes(buf)`` on secrets.
"""
from __future__ import annotations

import hmac
from typing import Optional


class SecureBuffer(bytearray):
    """A ``bytearray`` that wipes itself."""

    def __init__(self, data: bytes | bytearray | memoryview | str = b"", encoding: str = "utf-8"):
        if isinstance(data, str):
            data = data.encode(encoding)
        super().__init__(data)

    def __enter__(self) -> "SecureBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self):
        self.wipe()

    def __repr__(self) -> str:
        # never show the contents
        return f"SecureBuffer(<{len(self)} bytes>)"

    __str__ = __repr__

    def __eq__(self, other) -> bool:
        if not isinstance(other, (bytes, bytearray, memoryview)):
            return NotImplemented
        return hmac.compare_digest(self, other)

    def __ne__(self, other) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None  # mutable

    def wipe(self) -> None:
        """Overwrite the contents with zero bytes in place."""
        if len(self):
            self[:] = bytes(len(self))

    def mid(self, offset: int, length: Optional[int] = None) -> "SecureBuffer":
        """Return a new SecureBuffer holding ``length`` bytes from ``offset``."""
        end = len(self) if length is None else offset + length
        with memoryview(self) as view:
            return SecureBuffer(view[offset:end])

    @classmethod
    def concat(cls, *parts) -> "SecureBuffer":
        """Join several byte sequences into one SecureBuffer."""
        # preallocate; growing a bytearray can leave stale copies behind
        out = cls(bytes(sum(len(part) for part in parts)))
        offset = 0
        for part in parts:
            out[offset:offset + len(part)] = part
            offset += len(part)
        return out
