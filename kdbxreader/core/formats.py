"""
KDBX 4 outer header and VariantDictionary parsing.

Layout (all integers little-endian):

    Bytes 0-3:   signature 1 (0x9AA2D903)
    Bytes 4-7:   signature 2 (0xB54BFB67)
    Bytes 8-11:  version     (minor in the low word, major in the high word)
    Bytes 12+:   header entries [type u8][size u32][data]
                 terminated by an EndOfHeader entry (type 0)
    then:        SHA-256 of the header bytes     (32 bytes)
                 HMAC-SHA-256 of the header bytes (32 bytes)
    then:        HMAC block stream

Only major version 4 is accepted. Parsing never verifies the header HMAC;
that needs the derived key and is done by the pipeline.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass, field

from .errors import (
    DatabaseIntegrityError,
    HeaderHashMismatch,
    IncompleteOuterHeader,
    InvalidCompressionSuite,
    InvalidKDBXIdentifier,
    InvalidKDBXVersion,
    InvalidOuterCipherID,
    InvalidOuterHeaderEntry,
    InvalidVariantDictionaryValueType,
    InvalidVariantDictionaryVersion,
    MissingKDFParams,
    MistypedKDFParam,
)

SIGNATURE_1 = 0x9AA2D903
SIGNATURE_2 = 0xB54BFB67
KDBX_MAJOR_VERSION = 4

PREAMBLE_FORMAT = "<IIHH"  # sig1, sig2, minor, major
PREAMBLE_SIZE = struct.calcsize(PREAMBLE_FORMAT)  # 12 bytes

ENTRY_FORMAT = "<BI"
ENTRY_SIZE = struct.calcsize(ENTRY_FORMAT)  # 5 bytes

HASH_SIZE = 32
MASTER_SEED_SIZE = 32

# Outer header entry types
END_OF_HEADER = 0
COMMENT = 1
CIPHER_ID = 2
COMPRESSION_FLAGS = 3
MASTER_SEED = 4
ENCRYPTION_IV = 7
KDF_PARAMETERS = 11
PUBLIC_CUSTOM_DATA = 12

FIELD_NAMES = {
    CIPHER_ID: "CipherID",
    COMPRESSION_FLAGS: "CompressionFlags",
    MASTER_SEED: "MasterSeed",
    ENCRYPTION_IV: "EncryptionIV",
    KDF_PARAMETERS: "KdfParameters",
}

COMPRESSION_NONE = 0
COMPRESSION_GZIP = 1

# Outer cipher UUIDs
CIPHER_AES256 = bytes.fromhex("31c1f2e6bf714350be5805216afc5aff")
CIPHER_CHACHA20 = bytes.fromhex("d6038a2b8b6f4cb5a524339a31dbb59a")
KNOWN_CIPHERS = (CIPHER_AES256, CIPHER_CHACHA20)

# VariantDictionary
VD_VERSION = 0x0100
VD_CRITICAL_MASK = 0xFF00

VD_END = 0x00
VD_UINT32 = 0x04
VD_UINT64 = 0x05
VD_BOOL = 0x08
VD_INT32 = 0x0C
VD_INT64 = 0x0D
VD_STRING = 0x18
VD_BYTES = 0x42

_VD_INTEGERS = {
    VD_UINT32: "<I",
    VD_UINT64: "<Q",
    VD_INT32: "<i",
    VD_INT64: "<q",
}


class VariantDictionary:
    """Typed key/value map carried in the KdfParameters header field.

    Values keep their wire type so a parameter stored with the wrong type is
    reported as mistyped rather than silently coerced.
    """

    def __init__(self, items: dict[str, tuple[int, object]] | None = None):
        self._items = dict(items or {})

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def keys(self):
        return self._items.keys()

    def _get(self, key: str, value_type: int):
        try:
            stored_type, value = self._items[key]
        except KeyError:
            raise DatabaseIntegrityError(MissingKDFParams(key)) from None
        if stored_type != value_type:
            raise DatabaseIntegrityError(MistypedKDFParam(key))
        return value

    def get_uint32(self, key: str) -> int:
        return self._get(key, VD_UINT32)

    def get_uint64(self, key: str) -> int:
        return self._get(key, VD_UINT64)

    def get_bool(self, key: str) -> bool:
        return self._get(key, VD_BOOL)

    def get_string(self, key: str) -> str:
        return self._get(key, VD_STRING)

    def get_bytes(self, key: str) -> bytes:
        return self._get(key, VD_BYTES)

    @classmethod
    def parse(cls, data: bytes, entry_type: int = KDF_PARAMETERS) -> VariantDictionary:
        """Parse a serialized dictionary.

        *entry_type* is the header entry the bytes came from; it is reported
        if the dictionary is truncated.
        """
        def truncated() -> DatabaseIntegrityError:
            return DatabaseIntegrityError(InvalidOuterHeaderEntry(entry_type))

        if len(data) < 2:
            raise truncated()
        (version,) = struct.unpack_from("<H", data, 0)
        if (version & VD_CRITICAL_MASK) != (VD_VERSION & VD_CRITICAL_MASK):
            raise DatabaseIntegrityError(InvalidVariantDictionaryVersion(version))

        items: dict[str, tuple[int, object]] = {}
        offset = 2
        while True:
            if offset >= len(data):
                raise truncated()
            value_type = data[offset]
            offset += 1
            if value_type == VD_END:
                break

            if offset + 4 > len(data):
                raise truncated()
            (key_len,) = struct.unpack_from("<i", data, offset)
            offset += 4
            if key_len < 0 or offset + key_len > len(data):
                raise truncated()
            raw_key = data[offset : offset + key_len]
            offset += key_len

            if offset + 4 > len(data):
                raise truncated()
            (value_len,) = struct.unpack_from("<i", data, offset)
            offset += 4
            if value_len < 0 or offset + value_len > len(data):
                raise truncated()
            raw_value = data[offset : offset + value_len]
            offset += value_len

            try:
                key = raw_key.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DatabaseIntegrityError.from_utf8(exc) from exc
            items[key] = (value_type, _decode_value(value_type, raw_value, entry_type))

        return cls(items)

    def serialize(self) -> bytes:
        """Inverse of :meth:`parse`."""
        out = bytearray(struct.pack("<H", VD_VERSION))
        for key, (value_type, value) in self._items.items():
            raw_key = key.encode("utf-8")
            if value_type in _VD_INTEGERS:
                raw_value = struct.pack(_VD_INTEGERS[value_type], value)
            elif value_type == VD_BOOL:
                raw_value = b"\x01" if value else b"\x00"
            elif value_type == VD_STRING:
                raw_value = value.encode("utf-8")
            else:
                raw_value = bytes(value)
            out += struct.pack("<Bi", value_type, len(raw_key)) + raw_key
            out += struct.pack("<i", len(raw_value)) + raw_value
        out.append(VD_END)
        return bytes(out)


def _decode_value(value_type: int, raw: bytes, entry_type: int) -> object:
    if value_type in _VD_INTEGERS:
        fmt = _VD_INTEGERS[value_type]
        if len(raw) != struct.calcsize(fmt):
            raise DatabaseIntegrityError(InvalidOuterHeaderEntry(entry_type))
        return struct.unpack(fmt, raw)[0]
    if value_type == VD_BOOL:
        if len(raw) != 1:
            raise DatabaseIntegrityError(InvalidOuterHeaderEntry(entry_type))
        return raw != b"\x00"
    if value_type == VD_STRING:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DatabaseIntegrityError.from_utf8(exc) from exc
    if value_type == VD_BYTES:
        return bytes(raw)
    raise DatabaseIntegrityError(InvalidVariantDictionaryValueType(value_type))


@dataclass(frozen=True)
class OuterHeader:
    """Parsed KDBX 4 outer header."""

    major_version: int
    minor_version: int
    cipher_id: bytes
    compression: int
    master_seed: bytes
    encryption_iv: bytes
    kdf_parameters: VariantDictionary = field(compare=False)
    public_custom_data: VariantDictionary | None = field(default=None, compare=False)
    raw: bytes = b""  # header bytes covered by HeaderHash / HeaderHMAC


def _read_u32(data: bytes, entry_type: int) -> int:
    if len(data) != 4:
        raise DatabaseIntegrityError(InvalidOuterHeaderEntry(entry_type))
    return struct.unpack("<I", data)[0]


def parse_outer_header(data: bytes) -> tuple[OuterHeader, int]:
    """Parse the outer header.

    Returns ``(header, offset)`` where ``offset`` points just past the
    EndOfHeader entry, i.e. at the HeaderHash.
    """
    if len(data) < PREAMBLE_SIZE:
        raise DatabaseIntegrityError(InvalidKDBXIdentifier())

    sig1, sig2, minor, major = struct.unpack_from(PREAMBLE_FORMAT, data, 0)
    if sig1 != SIGNATURE_1 or sig2 != SIGNATURE_2:
        raise DatabaseIntegrityError(InvalidKDBXIdentifier())
    if major != KDBX_MAJOR_VERSION:
        raise DatabaseIntegrityError(InvalidKDBXVersion(
            version=KDBX_MAJOR_VERSION,
            file_major_version=major,
            file_minor_version=minor,
        ))

    fields: dict[int, bytes] = {}
    offset = PREAMBLE_SIZE
    while True:
        if offset + ENTRY_SIZE > len(data):
            raise DatabaseIntegrityError(IncompleteOuterHeader("EndOfHeader"))
        entry_type, size = struct.unpack_from(ENTRY_FORMAT, data, offset)
        offset += ENTRY_SIZE
        if offset + size > len(data):
            raise DatabaseIntegrityError(
                IncompleteOuterHeader(FIELD_NAMES.get(entry_type, "EndOfHeader"))
            )
        value = data[offset : offset + size]
        offset += size

        if entry_type == END_OF_HEADER:
            break
        if entry_type == COMMENT:
            continue
        if entry_type not in FIELD_NAMES and entry_type != PUBLIC_CUSTOM_DATA:
            raise DatabaseIntegrityError(InvalidOuterHeaderEntry(entry_type))
        fields[entry_type] = value

    for entry_type, name in FIELD_NAMES.items():
        if entry_type not in fields:
            raise DatabaseIntegrityError(IncompleteOuterHeader(name))

    cipher_id = fields[CIPHER_ID]
    if cipher_id not in KNOWN_CIPHERS:
        raise DatabaseIntegrityError(InvalidOuterCipherID(cipher_id))

    compression = _read_u32(fields[COMPRESSION_FLAGS], COMPRESSION_FLAGS)
    if compression not in (COMPRESSION_NONE, COMPRESSION_GZIP):
        raise DatabaseIntegrityError(InvalidCompressionSuite(compression))

    if len(fields[MASTER_SEED]) != MASTER_SEED_SIZE:
        raise DatabaseIntegrityError(InvalidOuterHeaderEntry(MASTER_SEED))

    custom = None
    if PUBLIC_CUSTOM_DATA in fields:
        custom = VariantDictionary.parse(fields[PUBLIC_CUSTOM_DATA], PUBLIC_CUSTOM_DATA)

    header = OuterHeader(
        major_version=major,
        minor_version=minor,
        cipher_id=cipher_id,
        compression=compression,
        master_seed=fields[MASTER_SEED],
        encryption_iv=fields[ENCRYPTION_IV],
        kdf_parameters=VariantDictionary.parse(fields[KDF_PARAMETERS], KDF_PARAMETERS),
        public_custom_data=custom,
        raw=bytes(data[:offset]),
    )
    return header, offset


def read_header_checks(data: bytes, offset: int) -> tuple[bytes, bytes, int]:
    """Split off ``(header_hash, header_hmac, payload_offset)``."""
    if offset + HASH_SIZE > len(data):
        raise DatabaseIntegrityError(IncompleteOuterHeader("HeaderHash"))
    header_hash = data[offset : offset + HASH_SIZE]
    offset += HASH_SIZE
    if offset + HASH_SIZE > len(data):
        raise DatabaseIntegrityError(IncompleteOuterHeader("HeaderHMAC"))
    header_hmac = data[offset : offset + HASH_SIZE]
    return header_hash, header_hmac, offset + HASH_SIZE


def verify_header_hash(header: OuterHeader, header_hash: bytes) -> None:
    """Check the unkeyed SHA-256 over the header (corruption, not credentials)."""
    if not hmac.compare_digest(hashlib.sha256(header.raw).digest(), header_hash):
        raise DatabaseIntegrityError(HeaderHashMismatch())
