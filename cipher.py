"""AES-GCM + LZ-String helpers matching what the browser does.

A paste is encrypted as ``base64(iv || AES-GCM(plaintext))`` with a 96-bit
random nonce, then compressed with ``LZString.compressToBase64``. The key is a
base64 raw 256-bit AES key carried in the share link fragment.
"""
import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from lzstring import LZString

from errors import CorruptData, Forbidden

KEY_LENGTH_BITS = 256
IV_LENGTH = 12

_lz = LZString()


def generate_key() -> str:
    return base64.b64encode(AESGCM.generate_key(bit_length=KEY_LENGTH_BITS)).decode()


def encrypt_data(plain: str, base64_key: str) -> str:
    key = base64.b64decode(base64_key)
    iv = os.urandom(IV_LENGTH)
    cipher = AESGCM(key).encrypt(iv, plain.encode("utf-8"), None)
    return base64.b64encode(iv + cipher).decode()


def decrypt_data(cipher_base64: str, base64_key: str) -> str:
    """Decrypt with the link key; any failure means the key is wrong."""
    try:
        key = base64.b64decode(base64_key, validate=True)
        combined = base64.b64decode(cipher_base64)
        plain = AESGCM(key).decrypt(combined[:IV_LENGTH], combined[IV_LENGTH:], None)
        return plain.decode("utf-8")
    except (InvalidTag, ValueError, binascii.Error, UnicodeDecodeError) as e:
        raise Forbidden() from e


def compress_string(value: str) -> str:
    return _lz.compressToBase64(value)


def decompress_string(value: str) -> Optional[str]:
    try:
        return _lz.decompressFromBase64(value)
    except (ValueError, TypeError, KeyError, IndexError):
        return None


def open_paste(stored: str, base64_key: str) -> str:
    decompressed = decompress_string(stored)
    if not decompressed:
        raise CorruptData("Failed to decompress data.")
    return decrypt_data(decompressed, base64_key)
