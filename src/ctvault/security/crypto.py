"""Envelope encryption for the vault payload.

Envelope layout (byte offsets):
- 0:   format flag, 1 byte (0x01)
- 1:   outer salt, 32 bytes
- 33:  EEK, 112 bytes: AES-CBC(outer key, outer IV, salt2 || IV2 || KGK), unpadded
- 145: payload, AES-CBC(blob key, IV2, payload) with PKCS#7 padding

The outer key and IV come from the master password
(:func:`~ctvault.security.kdf.make_key_and_iv_from_password`). The blob key
comes from the KGK and salt2 (:func:`~ctvault.security.kdf.make_key_from_kgk`).
Changing the master password only rewraps the KGK; the KGK and therefore the
key protecting the payload survive it.

The envelope carries no MAC. Tampering is only caught by the length and
padding checks, and a wrong password is indistinguishable from corruption.
"""
from __future__ import annotations

import logging
import struct
import zlib
from typing import NamedTuple, Optional

from ctvault.core.exceptions import ContractViolation, FormatError, IntegrityError
from .cipher import Padding, decrypt, encrypt
from .kdf import (
    AES_BLOCK_SIZE,
    AES_KEY_SIZE,
    KGK_SIZE,
    SALT_SIZE,
    make_key_and_iv_from_password,
    make_key_from_kgk,
)
from .rng import RandomSource, get_random_source
from .securebuffer import SecureBuffer

logger = logging.getLogger(__name__)

AES256_ENCRYPTED_MASTERKEY_FORMAT = 0x01
EEK_SIZE = SALT_SIZE + AES_BLOCK_SIZE + KGK_SIZE
HEADER_SIZE = 1 + SALT_SIZE + EEK_SIZE

COMPRESSION_LEVEL = 9

_UNLOCK_FAILED = "could not unlock vault"


class EnvelopeParts(NamedTuple):
    salt: bytes
    eek: bytes
    cipher_payload: bytes


class DecodedEnvelope(NamedTuple):
    payload: bytes
    kgk: SecureBuffer


# ---------------------------------------------------------------------------
# Compression (qCompress compatible)
# ---------------------------------------------------------------------------

def compress(data) -> bytes:
    """Deflate ``data`` behind a 4-byte big-endian length prefix."""
    if not len(data):
        return b"\x00\x00\x00\x00"
    return struct.pack(">I", len(data)) + zlib.compress(bytes(data), COMPRESSION_LEVEL)


def uncompress(data) -> bytes:
    """Inverse of :func:`compress`; raises IntegrityError on malformed input."""
    if len(data) < 4:
        raise IntegrityError(_UNLOCK_FAILED)
    (expected,) = struct.unpack(">I", bytes(data[:4]))
    if len(data) == 4:
        if expected:
            raise IntegrityError(_UNLOCK_FAILED)
        return b""
    try:
        out = zlib.decompress(bytes(data[4:]))
    except zlib.error as e:
        raise IntegrityError(_UNLOCK_FAILED) from e
    if len(out) != expected:
        raise IntegrityError(_UNLOCK_FAILED)
    return out


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def encode(
    key,
    iv,
    salt: bytes,
    kgk,
    data,
    compress_data: bool = True,
    rng: Optional[RandomSource] = None,
) -> bytes:
    """
    Encrypt ``data`` into a self-describing envelope.

    Args:
        key: outer AES key derived from the master password.
        iv: outer IV derived alongside ``key``.
        salt: outer salt ``key`` and ``iv`` were derived with; stored verbatim.
        kgk: the vault's key generation key, exactly KGK_SIZE bytes.
        data: payload to protect.
        compress_data: deflate ``data`` before encryption.
        rng: random source for salt2/IV2; defaults to the process source.

    Returns:
        Envelope bytes: ``0x01 || salt || EEK || encrypted payload``.
    """
    if len(kgk) != KGK_SIZE:
        raise ContractViolation(f"KGK must be {KGK_SIZE} bytes, got {len(kgk)}")
    if len(salt) != SALT_SIZE:
        raise ContractViolation(f"salt must be {SALT_SIZE} bytes, got {len(salt)}")
    if len(key) != AES_KEY_SIZE:
        raise ContractViolation(f"key must be {AES_KEY_SIZE} bytes, got {len(key)}")
    if len(iv) != AES_BLOCK_SIZE:
        raise ContractViolation(f"IV must be {AES_BLOCK_SIZE} bytes, got {len(iv)}")

    if rng is None:
        rng = get_random_source()
    salt2 = bytes(rng.random_bytes(SALT_SIZE))
    with SecureBuffer(rng.random_bytes(AES_BLOCK_SIZE)) as iv2, \
            SecureBuffer.concat(salt2, iv2, kgk) as inner_block:
        eek = bytes(encrypt(key, iv, inner_block, Padding.NONE))
        if len(eek) != EEK_SIZE:
            raise ContractViolation(f"EEK must be {EEK_SIZE} bytes, got {len(eek)}")

        with make_key_from_kgk(kgk, salt2) as blob_key:
            plain = compress(data) if compress_data else data
            cipher_payload = bytes(encrypt(blob_key, iv2, plain, Padding.STANDARD))

    logger.debug(
        "encoded envelope: %d payload bytes, compressed=%s, %d ciphertext bytes",
        len(data), compress_data, len(cipher_payload),
    )
    return bytes([AES256_ENCRYPTED_MASTERKEY_FORMAT]) + bytes(salt) + eek + cipher_payload


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def parse_envelope(envelope: bytes) -> EnvelopeParts:
    """Split an envelope into outer salt, EEK and encrypted payload."""
    if not envelope or envelope[0] != AES256_ENCRYPTED_MASTERKEY_FORMAT:
        raise FormatError("unsupported envelope format")
    if len(envelope) < HEADER_SIZE:
        raise IntegrityError(_UNLOCK_FAILED)
    return EnvelopeParts(
        salt=bytes(envelope[1:1 + SALT_SIZE]),
        eek=bytes(envelope[1 + SALT_SIZE:HEADER_SIZE]),
        cipher_payload=bytes(envelope[HEADER_SIZE:]),
    )


def decode_with_key(key, iv, envelope: bytes, uncompress_data: bool = True) -> DecodedEnvelope:
    """Open ``envelope`` with an already derived outer key and IV."""
    parts = parse_envelope(envelope)

    with decrypt(key, iv, parts.eek, Padding.NONE) as inner_block:
        if len(inner_block) != EEK_SIZE:
            raise IntegrityError(_UNLOCK_FAILED)
        salt2 = bytes(inner_block[:SALT_SIZE])
        iv2 = inner_block.mid(SALT_SIZE, AES_BLOCK_SIZE)
        kgk = inner_block.mid(SALT_SIZE + AES_BLOCK_SIZE, KGK_SIZE)

    try:
        with iv2, make_key_from_kgk(kgk, salt2) as blob_key:
            with decrypt(blob_key, iv2, parts.cipher_payload, Padding.STANDARD) as plain:
                payload = uncompress(plain) if uncompress_data else bytes(plain)
    except Exception:
        kgk.wipe()
        raise

    logger.debug("decoded envelope: %d payload bytes", len(payload))
    return DecodedEnvelope(payload=payload, kgk=kgk)


def decode(password, envelope: bytes, uncompress_data: bool = True) -> DecodedEnvelope:
    """
    Open ``envelope`` with the master password.

    Returns the payload and the recovered KGK. A wrong password and a
    corrupted envelope both raise IntegrityError with the same message.
    """
    parts = parse_envelope(envelope)
    key, iv = make_key_and_iv_from_password(password, parts.salt)
    with key, iv:
        return decode_with_key(key, iv, envelope, uncompress_data)
