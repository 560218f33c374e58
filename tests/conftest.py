"""Shared fixtures: a small KDBX 4 writer for building test databases."""

import base64
import gzip
import hashlib
import struct

import pytest

from kdbxreader.core.blocks import header_hmac, hmac_base_key, write_blocks
from kdbxreader.core.ciphers import AES256CBC, INNER_STREAM_CHACHA20, InnerStream
from kdbxreader.core.formats import (
    CIPHER_ID,
    COMPRESSION_FLAGS,
    COMPRESSION_GZIP,
    ENCRYPTION_IV,
    KDF_PARAMETERS,
    MASTER_SEED,
    SIGNATURE_1,
    SIGNATURE_2,
)
from kdbxreader.core.kdf import AesKDF, Argon2KDF
from kdbxreader.core.keys import CompositeKey

PASSWORD = "T3st!Passw0rd#Str0ng"

# Fast KDF params for tests
FAST_AES_KDF = AesKDF(seed=b"\x11" * 32, rounds=16)
FAST_ARGON2 = Argon2KDF(salt=b"\x44" * 16, iterations=1, memory=64 * 1024, parallelism=1)

MASTER_SEED_BYTES = b"\x22" * 32
STREAM_KEY = b"\x55" * 64

SAMPLE_ENTRIES = [
    ("Email", "hunter2"),
    ("Bank", "c0rrect horse battery staple"),
    ("Wi-Fi", "café 世界"),
]


def make_xml(entries, stream, name="Test Database"):
    """Build a KeePass XML document, masking passwords with *stream* in document order."""
    parts = [
        '<?xml version="1.0" encoding="utf-8" standalone="yes"?>',
        "<KeePassFile><Meta><Generator>kdbxreader-tests</Generator>",
        f"<DatabaseName>{name}</DatabaseName></Meta><Root><Group><Name>Root</Name>",
    ]
    for title, password in entries:
        masked = stream.apply(password.encode("utf-8"))
        parts.append(
            "<Entry>"
            f"<String><Key>Title</Key><Value>{title}</Value></String>"
            "<String><Key>Password</Key>"
            f'<Value Protected="True">{base64.b64encode(masked).decode()}</Value>'
            "</String></Entry>"
        )
    parts.append("</Group></Root></KeePassFile>")
    return "".join(parts).encode("utf-8")


def make_inner_header(stream_id=INNER_STREAM_CHACHA20, stream_key=STREAM_KEY, extra=()):
    out = struct.pack("<BI", 1, 4) + struct.pack("<I", stream_id)
    out += struct.pack("<BI", 2, len(stream_key)) + stream_key
    for entry_type, value in extra:
        out += struct.pack("<BI", entry_type, len(value)) + value
    return out + struct.pack("<BI", 0, 0)


def build_kdbx(
    key,
    *,
    kdf=FAST_AES_KDF,
    cipher=None,
    compression=COMPRESSION_GZIP,
    entries=SAMPLE_ENTRIES,
    major=4,
    minor=1,
    header_fields=None,
    inner=None,
    compressed=None,
    ciphertext=None,
):
    """
    Write a KDBX 4 file for *key*.

    header_fields: overrides by entry type; a value of None drops the field.
    inner: raw decrypted payload (inner header + XML) before compression.
    compressed: payload after compression, before encryption.
    ciphertext: bytes written to the block stream verbatim (skips the layers above).
    """
    cipher = cipher or AES256CBC()
    iv = b"\x33" * cipher.iv_size
    fields = {
        CIPHER_ID: cipher.cipher_id,
        COMPRESSION_FLAGS: struct.pack("<I", compression),
        MASTER_SEED: MASTER_SEED_BYTES,
        ENCRYPTION_IV: iv,
        KDF_PARAMETERS: kdf.parameters().serialize(),
    }
    fields.update(header_fields or {})

    header = struct.pack("<IIHH", SIGNATURE_1, SIGNATURE_2, minor, major)
    for entry_type, value in fields.items():
        if value is not None:
            header += struct.pack("<BI", entry_type, len(value)) + value
    header += struct.pack("<BI", 0, 4) + b"\r\n\r\n"

    transformed = kdf.derive(key.raw())
    base_key = hmac_base_key(MASTER_SEED_BYTES, transformed)

    if ciphertext is None:
        if compressed is None:
            if inner is None:
                stream = InnerStream(INNER_STREAM_CHACHA20, STREAM_KEY)
                inner = make_inner_header() + make_xml(entries, stream)
            compressed = gzip.compress(inner) if compression == COMPRESSION_GZIP else inner
        encryption_key = hashlib.sha256(MASTER_SEED_BYTES + transformed).digest()
        ciphertext = cipher.encrypt(encryption_key, fields[ENCRYPTION_IV] or iv, compressed)
    return (
        header
        + hashlib.sha256(header).digest()
        + header_hmac(base_key, header)
        + write_blocks(ciphertext, base_key, block_size=64)
    )


@pytest.fixture
def key():
    return CompositeKey(password=PASSWORD)


@pytest.fixture
def kdbx_factory():
    return build_kdbx
