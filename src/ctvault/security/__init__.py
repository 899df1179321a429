"""Security helpers: KDF, AES-CBC transform and envelope encryption for ctvault.

This package provides:
- PBKDF2-based derivation of the outer key/IV and of the payload key
- AES-256-CBC with optional PKCS#7 padding
- the envelope codec protecting the vault payload under a long-lived KGK
- SecureBuffer, a self-wiping container for secret bytes
- an in-memory session holding an unlocked vault
"""

from .securebuffer import SecureBuffer
from .rng import get_random_source, set_random_source
from .kdf import (
    generate_salt,
    generate_kgk,
    derive,
    make_key_and_iv_from_password,
    make_key_from_kgk,
)
from .cipher import Padding, Direction, transform, ciphertext_length
from .crypto import (
    encode,
    decode,
    decode_with_key,
    parse_envelope,
    DecodedEnvelope,
    EnvelopeParts,
)
from .session import VaultSession, get_session, unlock, get_kgk, lock

__all__ = [
    "SecureBuffer",
    "get_random_source",
    "set_random_source",
    "generate_salt",
    "generate_kgk",
    "derive",
    "make_key_and_iv_from_password",
    "make_key_from_kgk",
    "Padding",
    "Direction",
    "transform",
    "ciphertext_length",
    "encode",
    "decode",
    "decode_with_key",
    "parse_envelope",
    "DecodedEnvelope",
    "EnvelopeParts",
    "VaultSession",
    "get_session",
    "unlock",
    "get_kgk",
    "lock",
]
