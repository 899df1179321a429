"""In-memory session holding an unlocked vault with auto-lock.

An unlocked session keeps the outer salt, the outer key and IV derived from
the master password, and the KGK recovered from the envelope. With those it
can re-seal new payloads without asking for the password again, and it can
change the master password by rewrapping the unchanged KGK.

get_kgk() and seal() raise SessionLockedError once the session is locked or
its TTL has passed. lock() wipes every buffer the session holds.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from ctvault.core.exceptions import SessionLockedError
from .crypto import decode_with_key, encode, parse_envelope
from .kdf import generate_kgk, generate_salt, make_key_and_iv_from_password
from .securebuffer import SecureBuffer

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


class VaultSession:
    def __init__(self):
        self._salt: Optional[bytes] = None
        self._key: Optional[SecureBuffer] = None
        self._iv: Optional[SecureBuffer] = None
        self._kgk: Optional[SecureBuffer] = None
        self._expires_at: Optional[float] = None

    @property
    def is_unlocked(self) -> bool:
        if self._kgk is None:
            return False
        if self._expires_at is not None and time.time() > self._expires_at:
            self.lock()
            return False
        return True

    @property
    def salt(self) -> bytes:
        self._require_unlocked()
        return self._salt

    def create(self, password, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """Start a brand-new vault: fresh outer salt, fresh KGK.

        Nothing is persisted; call seal() to obtain the first envelope.
        """
        salt = generate_salt()
        key, iv = make_key_and_iv_from_password(password, salt)
        self._install(salt, key, iv, generate_kgk(), ttl_seconds)
        logger.info("created new vault key material")

    def unlock(
        self,
        password,
        envelope: bytes,
        uncompress: bool = True,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> bytes:
        """Open ``envelope`` with ``password`` and keep the key material.

        Returns the decrypted payload. Raises FormatError or IntegrityError
        without touching the current session state.
        """
        parts = parse_envelope(envelope)
        key, iv = make_key_and_iv_from_password(password, parts.salt)
        try:
            payload, kgk = decode_with_key(key, iv, envelope, uncompress)
        except Exception:
            key.wipe()
            iv.wipe()
            raise
        self._install(parts.salt, key, iv, kgk, ttl_seconds)
        logger.info("vault unlocked")
        return payload

    def seal(self, payload: bytes, compress: bool = True) -> bytes:
        """Encrypt ``payload`` into a new envelope with the held key material."""
        self._require_unlocked()
        return encode(self._key, self._iv, self._salt, self._kgk, payload, compress)

    def change_master_password(self, new_password, payload: bytes, compress: bool = True) -> bytes:
        """Rewrap the KGK under ``new_password`` and return the re-sealed envelope.

        The outer salt and the KGK stay the same; only the outer key and IV
        are replaced.
        """
        self._require_unlocked()
        key, iv = make_key_and_iv_from_password(new_password, self._salt)
        try:
            envelope = encode(key, iv, self._salt, self._kgk, payload, compress)
        except Exception:
            # keep the old password in force
            key.wipe()
            iv.wipe()
            raise
        self._key.wipe()
        self._iv.wipe()
        self._key, self._iv = key, iv
        logger.info("master password changed")
        return envelope

    def get_kgk(self) -> SecureBuffer:
        """Return the unlocked KGK or raise if locked/expired."""
        self._require_unlocked()
        return self._kgk

    def extend(self, extra_seconds: int) -> None:
        """Extend session TTL by extra_seconds if unlocked."""
        self._require_unlocked()
        self._expires_at = (self._expires_at or time.time()) + float(extra_seconds)

    def lock(self) -> None:
        """Wipe the key material and lock the session."""
        try:
            for buf in (self._key, self._iv, self._kgk):
                if buf is not None:
                    buf.wipe()
        finally:
            self._salt = None
            self._key = None
            self._iv = None
            self._kgk = None
            self._expires_at = None

    def _install(self, salt: bytes, key: SecureBuffer, iv: SecureBuffer, kgk: SecureBuffer, ttl_seconds: int) -> None:
        self.lock()
        self._salt = salt
        self._key = key
        self._iv = iv
        self._kgk = kgk
        self._expires_at = time.time() + float(ttl_seconds)

    def _require_unlocked(self) -> None:
        if self._kgk is None:
            raise SessionLockedError("Session is locked")
        if self._expires_at is not None and time.time() > self._expires_at:
            # auto-lock on expiry
            self.lock()
            raise SessionLockedError("Session expired and was locked")


# module-level default session
_default_session = VaultSession()


def get_session() -> VaultSession:
    return _default_session


def unlock(*args, **kwargs) -> bytes:
    return get_session().unlock(*args, **kwargs)


def get_kgk() -> SecureBuffer:
    return get_session().get_kgk()


def lock() -> None:
    get_session().lock()
