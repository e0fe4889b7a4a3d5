"""
Compression and encryption stages of the save envelope.

Each stage is a reversible transform selected by an enum stored in the
envelope header. Implementations are looked up through registries so a
game can plug in its own codec without touching the serializer.

Compression:
- NONE: identity
- ZLIB: zlib stream
- LZ4: LZ4 frame (fast, used for large saves)
- GZIP: gzip member

Encryption (authenticated):
- NONE: identity
- AES256: AES-256-GCM
- CHACHA20: ChaCha20-Poly1305
"""

from __future__ import annotations

import gzip
import os
import zlib
from abc import ABC, abstractmethod
from enum import IntEnum

import lz4.frame
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from persistence.save.errors import (
    CompressionError,
    DecompressionError,
    EncryptionError,
    DecryptionError,
)


class CompressionType(IntEnum):
    """Compression kinds. Values are written to the header."""
    NONE = 0
    ZLIB = 1
    LZ4 = 2
    GZIP = 3


class EncryptionType(IntEnum):
    """Encryption kinds. Values are written to the header."""
    NONE = 0
    AES256 = 1
    CHACHA20 = 2


def compute_checksum(data: bytes) -> int:
    """CRC32 of a byte string as an unsigned 32-bit integer."""
    return zlib.crc32(data) & 0xFFFFFFFF


# Compression

class Compressor(ABC):
    """A reversible compression stage."""

    kind: CompressionType = CompressionType.NONE

    @abstractmethod
    def compress(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def decompress(self, data: bytes) -> bytes:
        ...


class NullCompressor(Compressor):
    kind = CompressionType.NONE

    def compress(self, data: bytes) -> bytes:
        return data

    def decompress(self, data: bytes) -> bytes:
        return data


class ZlibCompressor(Compressor):
    kind = CompressionType.ZLIB

    def __init__(self, level: int = 6):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        try:
            return zlib.compress(data, self.level)
        except zlib.error as e:
            raise CompressionError(f"zlib: {e}") from e

    def decompress(self, data: bytes) -> bytes:
        try:
            return zlib.decompress(data)
        except zlib.error as e:
            raise DecompressionError(f"zlib: {e}") from e


class GzipCompressor(Compressor):
    kind = CompressionType.GZIP

    def __init__(self, level: int = 6):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        # mtime=0 keeps output deterministic for identical input
        return gzip.compress(data, compresslevel=self.level, mtime=0)

    def decompress(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise DecompressionError(f"gzip: {e}") from e


class Lz4Compressor(Compressor):
    kind = CompressionType.LZ4

    def compress(self, data: bytes) -> bytes:
        try:
            return lz4.frame.compress(data)
        except RuntimeError as e:
            raise CompressionError(f"lz4: {e}") from e

    def decompress(self, data: bytes) -> bytes:
        try:
            return lz4.frame.decompress(data)
        except RuntimeError as e:
            raise DecompressionError(f"lz4: {e}") from e


# Encryption

NONCE_SIZE = 12
KEY_SIZE = 32


def derive_key(key: bytes, info: bytes = b"save-envelope") -> bytes:
    """
    Normalize a caller key to 32 bytes.

    32-byte keys are used as-is; anything else (a passphrase, a short
    key) is stretched with HKDF-SHA256.
    """
    if not key:
        raise EncryptionError("Encryption key is empty")
    if len(key) == KEY_SIZE:
        return key
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=info,
    ).derive(key)


class Cipher(ABC):
    """A reversible encryption stage."""

    kind: EncryptionType = EncryptionType.NONE

    @abstractmethod
    def encrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        ...

    @abstractmethod
    def decrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        ...


class NullCipher(Cipher):
    kind = EncryptionType.NONE

    def encrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        return data

    def decrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        return data


class AeadCipher(Cipher):
    """
    Authenticated cipher: output is nonce + ciphertext + tag.

    Subclasses pick the primitive from cryptography's AEAD family.
    """

    primitive: type = AESGCM

    def encrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        try:
            aead = self.primitive(derive_key(key))
            return nonce + aead.encrypt(nonce, data, associated_data or None)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"{self.kind.name}: {e}") from e

    def decrypt(self, data: bytes, key: bytes, associated_data: bytes = b"") -> bytes:
        if len(data) < NONCE_SIZE:
            raise DecryptionError(f"{self.kind.name}: ciphertext too short")
        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            aead = self.primitive(derive_key(key))
            return aead.decrypt(nonce, ciphertext, associated_data or None)
        except InvalidTag as e:
            raise DecryptionError(
                f"{self.kind.name}: authentication failed (wrong key or tampered data)"
            ) from e
        except (ValueError, TypeError, EncryptionError) as e:
            raise DecryptionError(f"{self.kind.name}: {e}") from e


class AesGcmCipher(AeadCipher):
    kind = EncryptionType.AES256
    primitive = AESGCM


class ChaCha20Cipher(AeadCipher):
    kind = EncryptionType.CHACHA20
    primitive = ChaCha20Poly1305


# Registries

_compressors: dict[CompressionType, Compressor] = {}
_ciphers: dict[EncryptionType, Cipher] = {}


def register_compressor(compressor: Compressor) -> Compressor:
    """Register (or replace) the implementation for a compression kind."""
    _compressors[compressor.kind] = compressor
    return compressor


def register_cipher(cipher: Cipher) -> Cipher:
    """Register (or replace) the implementation for an encryption kind."""
    _ciphers[cipher.kind] = cipher
    return cipher


def get_compressor(kind: CompressionType) -> Compressor:
    """Look up the compressor for a header value."""
    try:
        return _compressors[CompressionType(kind)]
    except (KeyError, ValueError) as e:
        raise DecompressionError(f"Unsupported compression type: {kind}") from e


def get_cipher(kind: EncryptionType) -> Cipher:
    """Look up the cipher for a header value."""
    try:
        return _ciphers[EncryptionType(kind)]
    except (KeyError, ValueError) as e:
        raise DecryptionError(f"Unsupported encryption type: {kind}") from e


for _compressor in (NullCompressor(), ZlibCompressor(), GzipCompressor(), Lz4Compressor()):
    register_compressor(_compressor)

for _cipher in (NullCipher(), AesGcmCipher(), ChaCha20Cipher()):
    register_cipher(_cipher)
