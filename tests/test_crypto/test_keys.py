"""Tests for secp256k1 key helpers and hashing utilities."""

from __future__ import annotations

import re

import pytest

from doauth.crypto.keys import (
    generate_private_key,
    private_key_to_address,
    private_key_to_public_key,
    public_key_to_address,
    sign_message,
    verify_signature,
)
from doauth.utils.crypto import (
    blake2b256,
    new_bearer_token,
    new_nonce,
    new_object_id,
    object_id_bytes,
    sha256,
)

_ADDRESS = re.compile(r"^0x[0-9a-f]{64}$")


class TestKeys:
    def test_private_key_size(self) -> None:
        assert len(generate_private_key()) == 32

    def test_public_key_encodings(self) -> None:
        key = generate_private_key()
        assert len(private_key_to_public_key(key)) == 33
        assert len(private_key_to_public_key(key, compressed=False)) == 65

    def test_address_format(self) -> None:
        assert _ADDRESS.match(private_key_to_address(generate_private_key()))

    def test_address_independent_of_encoding(self) -> None:
        key = generate_private_key()
        compressed = private_key_to_public_key(key)
        uncompressed = private_key_to_public_key(key, compressed=False)
        assert public_key_to_address(compressed) == public_key_to_address(uncompressed)

    def test_invalid_public_key(self) -> None:
        with pytest.raises(ValueError, match="invalid public key"):
            public_key_to_address(b"\x02" + b"\x00" * 5)


class TestSignatures:
    def test_sign_and_verify(self) -> None:
        key = generate_private_key()
        sig = sign_message(key, b"hello")
        assert verify_signature(private_key_to_public_key(key), b"hello", sig)

    def test_deterministic(self) -> None:
        key = generate_private_key()
        assert sign_message(key, b"m") == sign_message(key, b"m")

    def test_wrong_message(self) -> None:
        key = generate_private_key()
        sig = sign_message(key, b"hello")
        assert not verify_signature(private_key_to_public_key(key), b"hullo", sig)

    def test_wrong_key(self) -> None:
        sig = sign_message(generate_private_key(), b"hello")
        other = private_key_to_public_key(generate_private_key())
        assert not verify_signature(other, b"hello", sig)

    def test_garbage_signature(self) -> None:
        key = generate_private_key()
        assert not verify_signature(private_key_to_public_key(key), b"hello", b"\x30\x01")


class TestHelpers:
    def test_digests(self) -> None:
        assert sha256(b"").hex().startswith("e3b0c442")
        assert len(blake2b256(b"x")) == 32

    def test_object_ids(self) -> None:
        oid = new_object_id()
        assert _ADDRESS.match(oid)
        assert len(object_id_bytes(oid)) == 32
        assert oid != new_object_id()

    def test_object_id_bytes_rejects_non_hex(self) -> None:
        with pytest.raises(ValueError):
            object_id_bytes("0xnothex")

    def test_tokens_and_nonces(self) -> None:
        assert len(new_bearer_token()) == 64
        assert len(new_nonce()) == 16
        assert len(new_nonce(24)) == 24
