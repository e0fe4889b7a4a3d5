"""
Save file serialization.

On-disk envelope = fixed-size binary header + payload.

Header (big-endian, HEADER_SIZE bytes):
    magic            4s   b"SAVE"
    header_length    u16  byte length of this header
    format_version   u16
    compression      u8   CompressionType
    encryption       u8   EncryptionType
    flags            u8   bit 0: compressed_size is present
    reserved         1 byte
    original_size    u64  serialized slot size before compression
    compressed_size  u64
    payload_size     u64  stored payload size
    checksum         u32  CRC32 of the stored payload bytes
    data_checksum    u32  CRC32 of the serialized slot bytes
    timestamp        f64  seconds since the epoch

Encode: JSON -> compress -> encrypt -> checksums -> prepend header.
Decode is the exact inverse. Both checksums are always verified; the
payload start is computed from header_length, never searched for.
"""

from __future__ import annotations

import logging
import struct
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError as ModelValidationError

from persistence.save.codecs import (
    CompressionType,
    EncryptionType,
    compute_checksum,
    get_cipher,
    get_compressor,
)
from persistence.save.errors import (
    ChecksumMismatch,
    DecryptionError,
    EncryptionError,
    FormatVersionMismatch,
    InvalidDataError,
    SerializationError,
)
from persistence.save.slot import SaveSlot


logger = logging.getLogger(__name__)


MAGIC = b"SAVE"  # 0x53415645
FORMAT_VERSION = 1

FLAG_HAS_COMPRESSED_SIZE = 0x01

_HEADER_STRUCT = struct.Struct(">4sHHBBBxQQQIId")
_PREFIX_STRUCT = struct.Struct(">4sH")
HEADER_SIZE = _HEADER_STRUCT.size


@dataclass
class SaveFileHeader:
    """Decoded envelope header."""
    magic: bytes
    version: int
    compression: CompressionType
    encryption: EncryptionType
    data_size: int
    compressed_size: Optional[int]
    payload_size: int
    checksum: int
    data_checksum: int
    timestamp: float
    header_size: int = HEADER_SIZE

    def pack(self) -> bytes:
        flags = FLAG_HAS_COMPRESSED_SIZE if self.compressed_size is not None else 0
        return _HEADER_STRUCT.pack(
            self.magic,
            self.header_size,
            self.version,
            int(self.compression),
            int(self.encryption),
            flags,
            self.data_size,
            self.compressed_size or 0,
            self.payload_size,
            self.checksum,
            self.data_checksum,
            self.timestamp,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SaveFileHeader:
        """
        Decode the header at the start of an envelope.

        Only structural checks happen here; magic and version are
        checked by the loader.
        """
        if len(data) < _PREFIX_STRUCT.size:
            raise InvalidDataError("Header not found: file too short")

        magic, header_size = _PREFIX_STRUCT.unpack_from(data)
        if magic != MAGIC:
            raise InvalidDataError("Invalid magic number")
        if header_size < HEADER_SIZE or len(data) < header_size:
            raise InvalidDataError(
                f"Truncated header: need {max(header_size, HEADER_SIZE)} bytes, have {len(data)}"
            )

        (
            magic, header_size, version, compression, encryption, flags,
            data_size, compressed_size, payload_size, checksum, data_checksum,
            timestamp,
        ) = _HEADER_STRUCT.unpack_from(data)

        try:
            compression = CompressionType(compression)
            encryption = EncryptionType(encryption)
        except ValueError as e:
            raise InvalidDataError(f"Unknown stage in header: {e}") from e

        return cls(
            magic=magic,
            version=version,
            compression=compression,
            encryption=encryption,
            data_size=data_size,
            compressed_size=compressed_size if flags & FLAG_HAS_COMPRESSED_SIZE else None,
            payload_size=payload_size,
            checksum=checksum,
            data_checksum=data_checksum,
            timestamp=timestamp,
            header_size=header_size,
        )


def _associated_data(version: int) -> bytes:
    """Header fields bound into the AEAD tag."""
    return MAGIC + struct.pack(">H", version)


@dataclass
class SerializationResult:
    """
    Output of a successful serialize call.

    Attributes:
        data: Complete envelope bytes (header + payload)
        original_size: Serialized slot size before compression
        compressed_size: Size after compression (None if uncompressed)
        compression_ratio: compressed / original (None if uncompressed)
        serialization_time: Elapsed milliseconds
        header: The header written in front of the payload
    """
    data: bytes
    original_size: int
    compressed_size: Optional[int]
    compression_ratio: Optional[float]
    serialization_time: float
    header: SaveFileHeader

    @property
    def success(self) -> bool:
        return True


class SaveSerializer:
    """
    Encodes save slots into envelopes.

    Usage:
        serializer = SaveSerializer(compression=CompressionType.LZ4)
        result = serializer.serialize(slot)
        path.write_bytes(result.data)

        secret = SaveSerializer.with_encryption(key)
    """

    def __init__(
        self,
        compression: CompressionType = CompressionType.ZLIB,
        encryption: EncryptionType = EncryptionType.NONE,
        encryption_key: Optional[bytes] = None,
        format_version: int = FORMAT_VERSION,
    ):
        if encryption != EncryptionType.NONE and not encryption_key:
            raise EncryptionError(f"{encryption.name} encryption requires a key")

        self.compression = CompressionType(compression)
        self.encryption = EncryptionType(encryption)
        self.encryption_key = encryption_key
        self.format_version = format_version

    @classmethod
    def with_compression(cls, compression: CompressionType = CompressionType.ZLIB) -> SaveSerializer:
        return cls(compression=compression)

    @classmethod
    def with_encryption(
        cls,
        key: bytes,
        encryption: EncryptionType = EncryptionType.AES256,
        compression: CompressionType = CompressionType.ZLIB,
    ) -> SaveSerializer:
        return cls(compression=compression, encryption=encryption, encryption_key=key)

    @property
    def compression_enabled(self) -> bool:
        return self.compression != CompressionType.NONE

    @property
    def encryption_enabled(self) -> bool:
        return self.encryption != EncryptionType.NONE

    def serialize(self, slot: SaveSlot) -> SerializationResult:
        """
        Encode a slot.

        Raises:
            SerializationError: If any stage fails
        """
        start = time.perf_counter()

        try:
            raw = slot.to_json_bytes()
        except (ValueError, TypeError) as e:
            raise SerializationError(f"Serialization error: {e}") from e

        original_size = len(raw)
        data_checksum = compute_checksum(raw)

        payload = raw
        compressed_size = None
        if self.compression_enabled:
            payload = get_compressor(self.compression).compress(payload)
            compressed_size = len(payload)

        if self.encryption_enabled:
            payload = get_cipher(self.encryption).encrypt(
                payload,
                self.encryption_key,
                _associated_data(self.format_version),
            )

        header = SaveFileHeader(
            magic=MAGIC,
            version=self.format_version,
            compression=self.compression,
            encryption=self.encryption,
            data_size=original_size,
            compressed_size=compressed_size,
            payload_size=len(payload),
            checksum=compute_checksum(payload),
            data_checksum=data_checksum,
            timestamp=time.time(),
        )

        try:
            envelope = header.pack() + payload
        except struct.error as e:
            raise SerializationError(f"Header serialization error: {e}") from e

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        ratio = compressed_size / original_size if compressed_size is not None and original_size else None

        logger.debug(
            f"Serialized slot {slot.slot_number}: {original_size} -> {len(envelope)} bytes "
            f"({self.compression.name}/{self.encryption.name}, {elapsed_ms:.2f} ms)"
        )

        return SerializationResult(
            data=envelope,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=ratio,
            serialization_time=elapsed_ms,
            header=header,
        )

    # Alias matching the slot-oriented naming used elsewhere
    serialize_save_slot = serialize


class LoadSerializer:
    """
    Decodes envelopes back into save slots.

    Compression and encryption are read from each file's header; the
    loader only needs the decryption key for encrypted files.

    Usage:
        loader = LoadSerializer()
        slot = loader.deserialize(path.read_bytes())
    """

    def __init__(
        self,
        decryption_key: Optional[bytes] = None,
        format_version: int = FORMAT_VERSION,
    ):
        self.decryption_key = decryption_key
        self.format_version = format_version

    @classmethod
    def with_decryption(cls, key: bytes) -> LoadSerializer:
        return cls(decryption_key=key)

    def parse_header(self, data: bytes) -> SaveFileHeader:
        """
        Decode and check the header.

        Raises:
            InvalidDataError: Bad magic or truncated header
            FormatVersionMismatch: Written by another format version
        """
        header = SaveFileHeader.unpack(data)
        if header.version != self.format_version:
            raise FormatVersionMismatch(expected=self.format_version, found=header.version)
        return header

    def deserialize(self, data: bytes) -> SaveSlot:
        """
        Decode a slot.

        Raises:
            InvalidDataError: Malformed envelope or document
            FormatVersionMismatch: Unsupported format version
            ChecksumMismatch: Payload does not match the stored checksums
            DecryptionError: Key missing or wrong, or data tampered with
            DecompressionError: Payload cannot be decompressed
        """
        header = self.parse_header(data)

        payload = data[header.header_size:]
        if len(payload) != header.payload_size:
            raise InvalidDataError(
                f"Payload size mismatch: header says {header.payload_size}, found {len(payload)}"
            )

        actual = compute_checksum(payload)
        if actual != header.checksum:
            raise ChecksumMismatch(header.checksum, actual, stage="payload")

        if header.encryption != EncryptionType.NONE:
            if not self.decryption_key:
                raise DecryptionError("Decryption key not provided")
            payload = get_cipher(header.encryption).decrypt(
                payload,
                self.decryption_key,
                _associated_data(header.version),
            )

        if header.compression != CompressionType.NONE:
            payload = get_compressor(header.compression).decompress(payload)

        if len(payload) != header.data_size:
            raise ChecksumMismatch(header.data_size, len(payload), stage="data size")

        actual = compute_checksum(payload)
        if actual != header.data_checksum:
            raise ChecksumMismatch(header.data_checksum, actual, stage="data")

        try:
            return SaveSlot.from_json_bytes(payload)
        except ModelValidationError as e:
            raise InvalidDataError(f"Save document does not match the slot schema: {e}") from e

    # Alias matching the slot-oriented naming used elsewhere
    deserialize_save_slot = deserialize


def read_header(data: bytes) -> SaveFileHeader:
    """Decode a header without checking the format version."""
    return SaveFileHeader.unpack(data)
