"""Unit tests for the envelope codec in ctvault.security.crypto."""

import json
import random
import struct
import zlib
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from ctvault.core.exceptions import ContractViolation, FormatError, IntegrityError
from ctvault.security.cipher import Padding, ciphertext_length, decrypt
from ctvault.security.crypto import (
    AES256_ENCRYPTED_MASTERKEY_FORMAT,
    EEK_SIZE,
    HEADER_SIZE,
    DecodedEnvelope,
    compress,
    decode,
    decode_with_key,
    encode,
    parse_envelope,
    uncompress,
)
from ctvault.security.kdf import make_key_and_iv_from_password
from ctvault.security.securebuffer import SecureBuffer

PASSWORD = b"correct horse"
WRONG_PASSWORD = b"wrong horse"
SALT = bytes(32)
KGK = b"\x01" * 64


class SeededRandom:
    """Deterministic random source for reproducible envelopes."""

    def __init__(self, seed):
        self._rng = random.Random(seed)

    def random_bytes(self, size):
        return self._rng.randbytes(size)


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture(scope="module")
def outer():
    """Outer key and IV for PASSWORD and the all-zero salt."""
    return make_key_and_iv_from_password(PASSWORD, SALT)


@pytest.fixture
def envelope(outer):
    key, iv = outer
    return encode(key, iv, SALT, KGK, b"hello vault", False, rng=SeededRandom(7))


@pytest.fixture
def records():
    entries = [
        {"domain": f"site{i}.example", "username": f"user{i}", "length": 16, "iterations": 4096}
        for i in range(50)
    ]
    return json.dumps(entries).encode("utf-8")


# ==============================================================================
# Tests: concrete scenario
# ==============================================================================

def test_hello_vault_roundtrip(outer, envelope):
    result = decode(PASSWORD, envelope, False)

    assert isinstance(result, DecodedEnvelope)
    assert result.payload == b"hello vault"
    assert result.kgk == KGK
    assert isinstance(result.kgk, SecureBuffer)


def test_hello_vault_wrong_password(envelope):
    with pytest.raises(IntegrityError):
        decode(WRONG_PASSWORD, envelope, False)


def test_wrong_password_and_corruption_report_the_same_error(envelope):
    with pytest.raises(IntegrityError) as wrong:
        decode(WRONG_PASSWORD, envelope, False)
    with pytest.raises(IntegrityError) as truncated:
        decode(PASSWORD, envelope[:HEADER_SIZE + 5], False)

    assert type(wrong.value) is type(truncated.value)
    assert str(wrong.value) == str(truncated.value)


def test_wrong_password_compressed_envelope(outer, records):
    key, iv = outer
    env = encode(key, iv, SALT, KGK, records, True, rng=SeededRandom(11))
    with pytest.raises(IntegrityError):
        decode(WRONG_PASSWORD, env, True)


# ==============================================================================
# Tests: round trips and layout
# ==============================================================================

@pytest.mark.parametrize("compress_data", [True, False])
@pytest.mark.parametrize("payload", [b"", b"x", b"0123456789abcdef", bytes(range(256)) * 5])
def test_roundtrip(outer, payload, compress_data):
    key, iv = outer
    env = encode(key, iv, SALT, KGK, payload, compress_data)
    payload_out, kgk_out = decode_with_key(key, iv, env, compress_data)

    assert payload_out == payload
    assert kgk_out == KGK


def test_roundtrip_with_password_and_compression(outer, records):
    key, iv = outer
    env = encode(key, iv, SALT, KGK, records, True)
    assert decode(PASSWORD, env, True) == (records, KGK)


@pytest.mark.parametrize("compress_data", [True, False])
def test_envelope_length(outer, records, compress_data):
    key, iv = outer
    env = encode(key, iv, SALT, KGK, records, compress_data)
    plain = compress(records) if compress_data else records

    assert len(env) == HEADER_SIZE + ciphertext_length(len(plain))
    assert HEADER_SIZE == 145
    assert EEK_SIZE == 112


def test_envelope_layout(outer):
    key, iv = outer
    rng = SeededRandom(3)
    expected = SeededRandom(3)
    salt2 = expected.random_bytes(32)
    iv2 = expected.random_bytes(16)

    env = encode(key, iv, SALT, KGK, b"payload", False, rng=rng)
    parts = parse_envelope(env)

    assert env[0] == AES256_ENCRYPTED_MASTERKEY_FORMAT
    assert parts.salt == SALT
    assert len(parts.eek) == EEK_SIZE
    inner = decrypt(key, iv, parts.eek, Padding.NONE)
    assert inner == salt2 + iv2 + KGK


def test_same_seed_gives_same_envelope(outer):
    key, iv = outer
    a = encode(key, iv, SALT, KGK, b"data", False, rng=SeededRandom(1))
    b = encode(key, iv, SALT, KGK, b"data", False, rng=SeededRandom(1))
    assert a == b


def test_kgk_stability_across_encodes(outer):
    key, iv = outer
    first = encode(key, iv, SALT, KGK, b"same data", True)
    second = encode(key, iv, SALT, KGK, b"same data", True)

    assert first != second
    assert first[1:33] == second[1:33]
    assert parse_envelope(first).eek != parse_envelope(second).eek
    assert decode_with_key(key, iv, first).kgk == decode_with_key(key, iv, second).kgk == KGK


def test_password_change_keeps_kgk(envelope):
    payload, kgk = decode(PASSWORD, envelope, False)
    new_key, new_iv = make_key_and_iv_from_password(b"new password", SALT)
    rewrapped = encode(new_key, new_iv, SALT, kgk, payload, False)

    assert decode(b"new password", rewrapped, False) == (b"hello vault", KGK)
    with pytest.raises(IntegrityError):
        decode_with_key(new_key, new_iv, envelope, False)


def test_compressed_payload_uses_length_prefixed_zlib(outer, records):
    key, iv = outer
    env = encode(key, iv, SALT, KGK, records, True)
    raw, _ = decode_with_key(key, iv, env, uncompress_data=False)

    assert struct.unpack(">I", raw[:4])[0] == len(records)
    assert zlib.decompress(raw[4:]) == records
    assert len(raw) < len(records)


# ==============================================================================
# Tests: rejection paths
# ==============================================================================

@pytest.mark.parametrize("flag", [0x00, 0x02, 0x7f, 0xff])
def test_unknown_format_flag(envelope, flag):
    tampered = bytes([flag]) + envelope[1:]
    with pytest.raises(FormatError):
        decode(PASSWORD, tampered, False)


def test_empty_envelope_is_format_error():
    with pytest.raises(FormatError):
        decode(PASSWORD, b"", False)


def test_format_error_precedes_length_check():
    with pytest.raises(FormatError):
        parse_envelope(b"\x02")


def test_truncated_header(envelope):
    with pytest.raises(IntegrityError):
        decode(PASSWORD, envelope[:HEADER_SIZE - 1], False)


def test_header_without_payload(envelope):
    with pytest.raises(IntegrityError):
        decode(PASSWORD, envelope[:HEADER_SIZE], False)


def test_ragged_payload(envelope):
    with pytest.raises(IntegrityError):
        decode(PASSWORD, envelope[:-1], False)


def test_tampered_padding(outer):
    key, iv = outer
    # 20 bytes -> two blocks, the second ending in twelve 0x0c padding bytes
    env = bytearray(encode(key, iv, SALT, KGK, b"x" * 20, False))
    # flipping the last byte of the first block flips the last padding byte
    env[HEADER_SIZE + 15] ^= 0x01
    with pytest.raises(IntegrityError):
        decode_with_key(key, iv, bytes(env), False)


def test_compression_flag_mismatch(envelope):
    with pytest.raises(IntegrityError):
        decode(PASSWORD, envelope, True)


def test_encode_rejects_wrong_kgk_size_before_any_work(outer):
    key, iv = outer
    rng = Mock()
    with pytest.raises(ContractViolation):
        encode(key, iv, SALT, b"\x01" * 63, b"data", rng=rng)
    rng.random_bytes.assert_not_called()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"salt": bytes(31)},
        {"key": b"k" * 16},
        {"iv": b"i" * 8},
    ],
)
def test_encode_rejects_wrong_sizes(outer, kwargs):
    key, iv = outer
    args = {"key": key, "iv": iv, "salt": SALT, "kgk": KGK, "data": b"data"}
    args.update(kwargs)
    with pytest.raises(ContractViolation):
        encode(**args)


# ==============================================================================
# Tests: compression helpers
# ==============================================================================

def test_compress_empty_is_four_zero_bytes():
    assert compress(b"") == b"\x00\x00\x00\x00"
    assert uncompress(b"\x00\x00\x00\x00") == b""


def test_compress_roundtrip(records):
    assert uncompress(compress(records)) == records


def test_uncompress_rejects_short_input():
    with pytest.raises(IntegrityError):
        uncompress(b"\x00\x00")


def test_uncompress_rejects_length_only_header_with_nonzero_size():
    with pytest.raises(IntegrityError):
        uncompress(b"\x00\x00\x00\x05")


def test_uncompress_rejects_garbage():
    with pytest.raises(IntegrityError):
        uncompress(b"\x00\x00\x00\x05not zlib")


def test_uncompress_rejects_length_mismatch():
    data = struct.pack(">I", 99) + zlib.compress(b"hello")
    with pytest.raises(IntegrityError):
        uncompress(data)


def test_concurrent_encodes_with_default_source(outer, records):
    key, iv = outer

    def seal(i):
        return encode(key, iv, SALT, KGK, records + str(i).encode())

    with ThreadPoolExecutor(max_workers=8) as pool:
        envelopes = list(pool.map(seal, range(16)))

    assert len({parse_envelope(e).eek for e in envelopes}) == 16
    for i, envelope in enumerate(envelopes):
        payload, kgk = decode_with_key(key, iv, envelope)
        assert payload == records + str(i).encode()
        assert kgk == KGK
