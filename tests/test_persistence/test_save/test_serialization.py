import itertools
import pytest

from persistence.save.codecs import CompressionType, EncryptionType
from persistence.save.errors import (
    ChecksumMismatch,
    DecryptionError,
    EncryptionError,
    FormatVersionMismatch,
    InvalidDataError,
)
from persistence.save.serialization import (
    HEADER_SIZE,
    MAGIC,
    LoadSerializer,
    SaveFileHeader,
    SaveSerializer,
    read_header,
)

KEY = b"0123456789abcdef0123456789abcdef"


@pytest.mark.parametrize(
    "compression, encryption",
    list(itertools.product(CompressionType, EncryptionType)),
)
def test_round_trip(sample_slot, compression, encryption):
    key = KEY if encryption != EncryptionType.NONE else None
    serializer = SaveSerializer(compression=compression, encryption=encryption, encryption_key=key)
    loader = LoadSerializer(decryption_key=key)

    result = serializer.serialize(sample_slot)
    restored = loader.deserialize(result.data)

    assert restored == sample_slot
    assert result.success
    assert result.header.compression == compression
    assert result.header.encryption == encryption

def test_header_layout(sample_slot):
    result = SaveSerializer().serialize(sample_slot)
    header = read_header(result.data)

    assert result.data[:4] == MAGIC
    assert header.header_size == HEADER_SIZE
    assert header.version == 1
    assert header.compression == CompressionType.ZLIB
    assert header.data_size == result.original_size == sample_slot.size_bytes()
    assert header.compressed_size == result.compressed_size
    assert header.payload_size == len(result.data) - HEADER_SIZE
    assert result.compression_ratio == pytest.approx(result.compressed_size / result.original_size)

def test_uncompressed_has_no_compressed_size(sample_slot):
    result = SaveSerializer.with_compression(CompressionType.NONE).serialize(sample_slot)
    assert result.compressed_size is None
    assert result.compression_ratio is None
    assert read_header(result.data).compressed_size is None

def test_header_pack_unpack():
    header = SaveFileHeader(
        magic=MAGIC, version=1,
        compression=CompressionType.LZ4, encryption=EncryptionType.CHACHA20,
        data_size=100, compressed_size=60, payload_size=88,
        checksum=0xDEADBEEF, data_checksum=0x12345678, timestamp=1700000000.5,
    )
    assert SaveFileHeader.unpack(header.pack()) == header

def test_flipped_payload_byte_is_detected(sample_slot):
    data = bytearray(SaveSerializer().serialize(sample_slot).data)
    data[HEADER_SIZE + 5] ^= 0xFF

    with pytest.raises(ChecksumMismatch) as exc_info:
        LoadSerializer().deserialize(bytes(data))
    assert exc_info.value.stage == "payload"

def test_flipped_encrypted_byte_is_detected_before_decryption(sample_slot):
    data = bytearray(SaveSerializer.with_encryption(KEY).serialize(sample_slot).data)
    data[-1] ^= 0x01

    with pytest.raises(ChecksumMismatch):
        LoadSerializer.with_decryption(KEY).deserialize(bytes(data))

def test_bad_magic(sample_slot):
    data = b"NOPE" + SaveSerializer().serialize(sample_slot).data[4:]
    with pytest.raises(InvalidDataError):
        LoadSerializer().deserialize(data)

@pytest.mark.parametrize("length", [0, 3, 10, HEADER_SIZE - 1])
def test_truncated_header(sample_slot, length):
    data = SaveSerializer().serialize(sample_slot).data[:length]
    with pytest.raises(InvalidDataError):
        LoadSerializer().deserialize(data)

def test_truncated_payload(sample_slot):
    data = SaveSerializer().serialize(sample_slot).data[:-10]
    with pytest.raises(InvalidDataError):
        LoadSerializer().deserialize(data)

def test_format_version_mismatch(sample_slot):
    data = SaveSerializer(format_version=2).serialize(sample_slot).data
    with pytest.raises(FormatVersionMismatch) as exc_info:
        LoadSerializer().deserialize(data)
    assert exc_info.value.expected == 1
    assert exc_info.value.found == 2

def test_encryption_requires_key():
    with pytest.raises(EncryptionError):
        SaveSerializer(encryption=EncryptionType.AES256)

def test_missing_decryption_key(sample_slot):
    data = SaveSerializer.with_encryption(KEY).serialize(sample_slot).data
    with pytest.raises(DecryptionError):
        LoadSerializer().deserialize(data)

def test_wrong_decryption_key(sample_slot):
    data = SaveSerializer.with_encryption(KEY, EncryptionType.CHACHA20).serialize(sample_slot).data
    with pytest.raises(DecryptionError):
        LoadSerializer.with_decryption(b"not the right key").deserialize(data)

def test_passphrase_keys(sample_slot):
    data = SaveSerializer.with_encryption(b"hunter2").serialize(sample_slot).data
    assert LoadSerializer.with_decryption(b"hunter2").deserialize(data) == sample_slot

def test_document_not_matching_schema():
    import json
    from persistence.save.codecs import compute_checksum

    raw = json.dumps({"slot_number": "three"}).encode()
    header = SaveFileHeader(
        magic=MAGIC, version=1,
        compression=CompressionType.NONE, encryption=EncryptionType.NONE,
        data_size=len(raw), compressed_size=None, payload_size=len(raw),
        checksum=compute_checksum(raw), data_checksum=compute_checksum(raw),
        timestamp=0.0,
    )
    with pytest.raises(InvalidDataError):
        LoadSerializer().deserialize(header.pack() + raw)

def test_aliases(sample_slot):
    result = SaveSerializer().serialize_save_slot(sample_slot)
    assert LoadSerializer().deserialize_save_slot(result.data) == sample_slot
