"""AES-256-CBC transform with selectable padding.

``Padding.NONE`` is for the fixed-size envelope key block and requires input
that is already a multiple of the block size. ``Padding.STANDARD`` is PKCS#7
and is used for the variable-size payload.

There is no authentication tag. A wrong key is only noticed when the PKCS#7
padding of the decrypted data does not check out.
"""
from __future__ import annotations

import enum

from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ctvault.core.exceptions import ContractViolation, IntegrityError
from .kdf import AES_BLOCK_SIZE, AES_KEY_SIZE
from .securebuffer import SecureBuffer


class Padding(enum.Enum):
    NONE = "none"
    STANDARD = "pkcs7"


class Direction(enum.Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


def ciphertext_length(plaintext_length: int, padding: Padding = Padding.STANDARD) -> int:
    """Length of the ciphertext produced for ``plaintext_length`` input bytes."""
    if padding is Padding.NONE:
        return plaintext_length
    return (plaintext_length // AES_BLOCK_SIZE + 1) * AES_BLOCK_SIZE


def transform(key, iv, data, padding: Padding, direction: Direction) -> SecureBuffer:
    """Encrypt or decrypt ``data`` with AES-256-CBC under ``key`` and ``iv``."""
    if len(key) != AES_KEY_SIZE:
        raise ContractViolation(f"key must be {AES_KEY_SIZE} bytes, got {len(key)}")
    if len(iv) != AES_BLOCK_SIZE:
        raise ContractViolation(f"IV must be {AES_BLOCK_SIZE} bytes, got {len(iv)}")

    if padding is Padding.NONE and len(data) % AES_BLOCK_SIZE:
        if direction is Direction.ENCRYPT:
            raise ContractViolation("unpadded input must be a multiple of the block size")
        raise IntegrityError("could not unlock vault")

    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    if direction is Direction.ENCRYPT:
        return _encrypt(cipher, data, padding)
    return _decrypt(cipher, data, padding)


def encrypt(key, iv, data, padding: Padding = Padding.STANDARD) -> SecureBuffer:
    return transform(key, iv, data, padding, Direction.ENCRYPT)


def decrypt(key, iv, data, padding: Padding = Padding.STANDARD) -> SecureBuffer:
    return transform(key, iv, data, padding, Direction.DECRYPT)


def _encrypt(cipher: Cipher, data, padding: Padding) -> SecureBuffer:
    encryptor = cipher.encryptor()
    if padding is Padding.NONE:
        return SecureBuffer.concat(encryptor.update(data), encryptor.finalize())

    padder = sym_padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
    with SecureBuffer.concat(padder.update(data), padder.finalize()) as padded:
        return SecureBuffer.concat(encryptor.update(padded), encryptor.finalize())


def _decrypt(cipher: Cipher, data, padding: Padding) -> SecureBuffer:
    decryptor = cipher.decryptor()
    try:
        plain = SecureBuffer.concat(decryptor.update(data), decryptor.finalize())
    except ValueError as e:
        # ragged ciphertext
        raise IntegrityError("could not unlock vault") from e
    if padding is Padding.NONE:
        return plain

    with plain:
        unpadder = sym_padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
        try:
            return SecureBuffer.concat(unpadder.update(plain), unpadder.finalize())
        except ValueError as e:
            raise IntegrityError("could not unlock vault") from e
