"""Encryption for secrets kept in the arguments file.

Values are encrypted with AES-256-CBC under a key derived by scrypt from the
host's machine id, so a copied arguments file is useless on another device.
The stored form is ``base64("<iv hex>:<ciphertext hex>")``.
"""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_SALT = b"kiosk-bridge"
KEY_LENGTH = 32
IV_LENGTH = 16


class SecretError(ValueError):
    """A stored secret could not be decrypted."""


def _derive_key(machine_id: str) -> bytes:
    kdf = Scrypt(salt=KEY_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(machine_id.encode("utf-8"))


def encrypt_secret(value: str, machine_id: str) -> str:
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    data = padder.update(value.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_derive_key(machine_id)), modes.CBC(iv)).encryptor()
    encrypted = encryptor.update(data) + encryptor.finalize()
    return base64.b64encode(f"{iv.hex()}:{encrypted.hex()}".encode("ascii")).decode("ascii")


def decrypt_secret(token: str, machine_id: str) -> str:
    try:
        iv_hex, _, data_hex = base64.b64decode(token, validate=True).decode("ascii").partition(":")
        decryptor = Cipher(algorithms.AES(_derive_key(machine_id)), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
        data = decryptor.update(bytes.fromhex(data_hex)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
    except ValueError as exc:
        raise SecretError(f"Unable to decrypt stored secret: {exc}") from exc
