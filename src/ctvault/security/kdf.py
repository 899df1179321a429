import logging
from typing import Dict, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ctvault.core.exceptions import ContractViolation
from .rng import random_bytes
from .securebuffer import SecureBuffer

logger = logging.getLogger(__name__)

SALT_SIZE = 32
AES_KEY_SIZE = 256 // 8
AES_BLOCK_SIZE = 16
KGK_SIZE = 64

# master password -> outer key || IV
DOMAIN_ITERATIONS = 32768
# KGK -> blob key; the KGK is random, so brute force cost does not matter here
KGK_ITERATIONS = 1024

_SUPPORTED_HASHES = (hashes.SHA256, hashes.SHA384)


def generate_salt(length: int = SALT_SIZE) -> bytes:
    """Return a cryptographically secure random salt."""
    return random_bytes(length)


def generate_kgk() -> SecureBuffer:
    """Return a fresh random key generation key."""
    return SecureBuffer(random_bytes(KGK_SIZE))


def derive(
    secret,
    salt: bytes,
    iterations: int,
    algorithm: hashes.HashAlgorithm,
    length: int,
) -> SecureBuffer:
    """
    Derive ``length`` bytes from ``secret`` with PBKDF2-HMAC.
    Returns the derived bytes in a SecureBuffer.
    """
    if isinstance(secret, str):
        secret = SecureBuffer(secret)
    if len(salt) != SALT_SIZE:
        raise ContractViolation(f"salt must be {SALT_SIZE} bytes, got {len(salt)}")
    if iterations < 1:
        raise ContractViolation("iterations must be positive")
    if not isinstance(algorithm, _SUPPORTED_HASHES):
        raise ContractViolation(f"unsupported hash algorithm: {algorithm.name}")
    if length < 1:
        raise ContractViolation("length must be positive")

    kdf = PBKDF2HMAC(
        algorithm=algorithm,
        length=length,
        salt=bytes(salt),
        iterations=iterations,
    )
    return SecureBuffer(kdf.derive(secret))


def make_key_and_iv_from_password(password, salt: bytes) -> Tuple[SecureBuffer, SecureBuffer]:
    """
    Turn the master password into the outer AES key and IV.

    PBKDF2-HMAC-SHA384 with DOMAIN_ITERATIONS rounds yields 48 bytes: the
    first AES_KEY_SIZE are the key, the next AES_BLOCK_SIZE are the IV.
    """
    logger.debug(
        "deriving outer key and IV: %s",
        kdf_params_to_dict(salt, DOMAIN_ITERATIONS, hashes.SHA384(), AES_KEY_SIZE + AES_BLOCK_SIZE),
    )
    with derive(
        password,
        salt,
        DOMAIN_ITERATIONS,
        hashes.SHA384(),
        AES_KEY_SIZE + AES_BLOCK_SIZE,
    ) as derived:
        return derived.mid(0, AES_KEY_SIZE), derived.mid(AES_KEY_SIZE, AES_BLOCK_SIZE)


def make_key_from_kgk(kgk, salt: bytes) -> SecureBuffer:
    """Derive the blob key protecting the payload from the KGK."""
    if len(kgk) != KGK_SIZE:
        raise ContractViolation(f"KGK must be {KGK_SIZE} bytes, got {len(kgk)}")
    return derive(kgk, salt, KGK_ITERATIONS, hashes.SHA256(), AES_KEY_SIZE)


def kdf_params_to_dict(salt: bytes, iterations: int, algorithm: hashes.HashAlgorithm, length: int) -> Dict:
    return {
        "algo": "pbkdf2-hmac",
        "hash": algorithm.name,
        "salt": bytes(salt).hex(),
        "iterations": iterations,
        "length": length,
    }
