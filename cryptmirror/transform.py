"""
Reversible file transform: brotli + AES-256-CTR.

Encoded layout: IV (16 bytes) || AES-256-CTR(key, IV, brotli(plaintext)).
The layout and the key folding below must stay byte-compatible with mirrors
that were encoded earlier.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import brotli
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_SIZE_BYTES = 16
KEY_SIZE = 32
BROTLI_MAX_QUALITY = 11


class TransformError(Exception):
    """Base class for transform failures."""


class KeyDerivationError(TransformError):
    """Raised when the secret is too short to fold into a key."""


class KeyFileError(TransformError):
    """Raised when the secret key file cannot be read."""


class CorruptPayloadError(TransformError):
    """Raised when an encoded payload cannot even hold an IV."""


def derive_key(secret: str) -> bytes:
    """Fold the secret's UTF-8 bytes onto themselves into a 32 byte key.

    Byte ``i`` is XORed in place with byte ``len - 1 - i`` for ``i`` in
    ``[0, 32)``. Iterations run in order, so once ``len - 1 - i < i`` the
    right-hand byte has already been folded. Not a real KDF.
    """
    buf = bytearray(secret.encode("utf-8"))
    if len(buf) < KEY_SIZE:
        raise KeyDerivationError(f"Secret must be at least {KEY_SIZE} bytes, got {len(buf)}")
    for i in range(KEY_SIZE):
        buf[i] ^= buf[len(buf) - 1 - i]
    return bytes(buf[:KEY_SIZE])


def load_key(key_path: Path) -> bytes:
    try:
        secret = key_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise KeyFileError(f"Cannot read secret key file {key_path}: {e}") from e
    return derive_key(secret)


def plain_copy(from_path: str, to_path: str) -> None:
    shutil.copyfile(from_path, to_path)


class Codec:
    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise KeyDerivationError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    def _cipher(self, iv: bytes) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CTR(iv))

    def encode(self, data: bytes) -> bytes:
        compressed = brotli.compress(data, mode=brotli.MODE_TEXT, quality=BROTLI_MAX_QUALITY)
        iv = os.urandom(IV_SIZE_BYTES)
        encryptor = self._cipher(iv).encryptor()
        return iv + encryptor.update(compressed) + encryptor.finalize()

    def decode(self, payload: bytes) -> bytes:
        if len(payload) < IV_SIZE_BYTES:
            raise CorruptPayloadError(f"Payload of {len(payload)} bytes is shorter than the IV")
        iv = payload[:IV_SIZE_BYTES]
        decryptor = self._cipher(iv).decryptor()
        compressed = decryptor.update(payload[IV_SIZE_BYTES:]) + decryptor.finalize()
        return brotli.decompress(compressed)

    def forward(self, from_path: str, to_path: str) -> None:
        data = Path(from_path).read_bytes()
        Path(to_path).write_bytes(self.encode(data))

    def backward(self, from_path: str, to_path: str) -> None:
        payload = Path(from_path).read_bytes()
        Path(to_path).write_bytes(self.decode(payload))
