"""Symmetric codec for Smart View message bodies.

This module provides:
- PKCS#7 padding and unpadding
- AES-128 encryption applied block by block (no IV, no chaining)
- SessionCodec, a key-bound wrapper used by the session engine

Protocol notes:
- The device does not exchange an IV: every 16-byte block is run through
  the block cipher on its own, which is what ECB mode does.
- Device replies carry null bytes *after* the PKCS#7 padding. They are
  trimmed before the padding is validated. This is a quirk of the
  device, not general PKCS#7 handling.
"""

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from samtv.errors import CodecError, InvalidKey, InvalidLength, InvalidPadding

__all__ = [
    "CodecError",
    "SessionCodec",
    "BLOCK_SIZE",
    "KEY_LENGTH",
    "pkcs7_pad",
    "pkcs7_unpad",
    "encrypt",
    "decrypt",
    "encode_byte_list",
]

# Constants
BLOCK_SIZE = 16  # AES block size
KEY_LENGTH = 16  # AES-128 session key


def _cipher(key: bytes) -> Cipher:
    if len(key) != KEY_LENGTH:
        raise InvalidKey(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
    return Cipher(algorithms.AES(key), modes.ECB())


def pkcs7_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Pad data to a multiple of block_size.

    An empty or block-aligned input still gets a full block of padding,
    so the padding length is never 0.
    """
    padder = padding.PKCS7(block_size * 8).padder()
    return padder.update(data) + padder.finalize()


def pkcs7_unpad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Remove and validate PKCS#7 padding.

    Every padding byte is checked against the declared length.

    Raises:
        InvalidPadding: If the padding length is 0, larger than the block
            size or the buffer, or any padding byte differs.
    """
    if not data:
        raise InvalidPadding("No data left to unpad")

    padlen = data[-1]
    if padlen == 0:
        raise InvalidPadding("Padding length is 0")
    if padlen > block_size or padlen > len(data):
        raise InvalidPadding(
            f"Padding length {padlen} exceeds buffer ({len(data)} bytes)"
        )

    if any(b != padlen for b in data[-padlen:]):
        raise InvalidPadding("Inconsistent padding bytes")

    return data[:-padlen]


def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """Pad and encrypt plaintext with the session key.

    Args:
        key: 16-byte session key.
        plaintext: Data to encrypt (can be empty).

    Returns:
        Ciphertext, a non-empty multiple of 16 bytes.

    Raises:
        InvalidKey: If key is not 16 bytes.
    """
    encryptor = _cipher(key).encryptor()
    return encryptor.update(pkcs7_pad(plaintext)) + encryptor.finalize()


def decrypt(key: bytes, ciphertext: bytes) -> bytes:
    """Decrypt a device message body.

    Args:
        key: 16-byte session key.
        ciphertext: Encrypted body.

    Returns:
        Plaintext with trailing null bytes and padding removed.

    Raises:
        InvalidKey: If key is not 16 bytes.
        InvalidLength: If ciphertext is not made of full blocks.
        InvalidPadding: If the padding is inconsistent.
    """
    cipher = _cipher(key)
    if len(ciphertext) % BLOCK_SIZE != 0:
        raise InvalidLength(
            f"Encrypted text does not have full blocks ({len(ciphertext)} bytes)"
        )

    decryptor = cipher.decryptor()
    plaintext = decryptor.update(ciphertext) + decryptor.finalize()

    # Null bytes follow the padding in device replies
    return pkcs7_unpad(plaintext.rstrip(b"\x00"))


def encode_byte_list(data: bytes) -> str:
    """Render bytes as the comma-separated decimal list the device expects."""
    return ", ".join(str(b) for b in data)


class SessionCodec:
    """Encrypts/decrypts message bodies with one session key.

    Usage:
        codec = SessionCodec(session_key)
        encrypted = codec.encode(b"...")
        plaintext = codec.decode(encrypted)
    """

    def __init__(self, key: bytes) -> None:
        """Initialize codec with a session key.

        Args:
            key: 16-byte session key.

        Raises:
            InvalidKey: If key is not 16 bytes.
        """
        if len(key) != KEY_LENGTH:
            raise InvalidKey(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._key = key

    def encode(self, data: bytes) -> bytes:
        """Encrypt data."""
        return encrypt(self._key, data)

    def decode(self, data: bytes) -> bytes:
        """Decrypt data."""
        return decrypt(self._key, data)
