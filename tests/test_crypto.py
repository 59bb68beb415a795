"""Tests for stored-secret encryption (kiosk/crypto.py)."""

from __future__ import annotations

import base64

import pytest
from kiosk.crypto import SecretError, decrypt_secret, encrypt_secret

MACHINE_ID = "3f9a1c0d5e7b4a2f8c6d0e1f2a3b4c5d"


def test_round_trip():
    token = encrypt_secret("s3cr3t pässword", MACHINE_ID)
    assert decrypt_secret(token, MACHINE_ID) == "s3cr3t pässword"


def test_token_format_and_fresh_iv():
    first = encrypt_secret("secret", MACHINE_ID)
    second = encrypt_secret("secret", MACHINE_ID)
    assert first != second
    iv_hex, separator, data_hex = base64.b64decode(first).decode("ascii").partition(":")
    assert separator == ":"
    assert len(bytes.fromhex(iv_hex)) == 16
    assert len(bytes.fromhex(data_hex)) % 16 == 0


@pytest.mark.parametrize("token", ["plain-text", "", base64.b64encode(b"zz:00").decode("ascii")])
def test_garbage_is_rejected(token):
    with pytest.raises(SecretError):
        decrypt_secret(token, MACHINE_ID)
