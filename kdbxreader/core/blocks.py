"""
HMAC block stream (KDBX 4).

Each block is ``[HMAC-SHA-256 (32)][size u32][data]``; the MAC covers
``u64le(index) || u32le(size) || data`` under a per-block key. A zero-size
block terminates the stream. The header HMAC uses the same construction
with index ``2**64 - 1``.
"""

from __future__ import annotations

import hashlib
import hmac
import struct

from .errors import BlockHashMismatch, DatabaseIntegrityError

HEADER_BLOCK_INDEX = 0xFFFFFFFFFFFFFFFF
DEFAULT_BLOCK_SIZE = 1024 * 1024


def hmac_base_key(master_seed: bytes, transformed_key: bytes) -> bytes:
    return hashlib.sha512(master_seed + transformed_key + b"\x01").digest()


def block_key(base_key: bytes, index: int) -> bytes:
    return hashlib.sha512(struct.pack("<Q", index) + base_key).digest()


def header_hmac(base_key: bytes, header: bytes) -> bytes:
    return hmac.new(block_key(base_key, HEADER_BLOCK_INDEX), header, "sha256").digest()


def _block_hmac(base_key: bytes, index: int, data: bytes) -> bytes:
    message = struct.pack("<QI", index, len(data)) + data
    return hmac.new(block_key(base_key, index), message, "sha256").digest()


def read_blocks(data: bytes, base_key: bytes) -> bytes:
    """Verify and concatenate the blocks of *data*."""
    out = bytearray()
    offset = 0
    index = 0
    while True:
        if offset + 36 > len(data):
            raise DatabaseIntegrityError(BlockHashMismatch(index))
        stored = data[offset : offset + 32]
        (size,) = struct.unpack_from("<I", data, offset + 32)
        offset += 36
        if offset + size > len(data):
            raise DatabaseIntegrityError(BlockHashMismatch(index))
        block = data[offset : offset + size]
        offset += size

        if not hmac.compare_digest(stored, _block_hmac(base_key, index, block)):
            raise DatabaseIntegrityError(BlockHashMismatch(index))
        if size == 0:
            return bytes(out)
        out += block
        index += 1


def write_blocks(data: bytes, base_key: bytes, block_size: int = DEFAULT_BLOCK_SIZE) -> bytes:
    """Split *data* into authenticated blocks, terminator included."""
    out = bytearray()
    chunks = [data[i : i + block_size] for i in range(0, len(data), block_size)]
    for index, chunk in enumerate(chunks + [b""]):
        out += _block_hmac(base_key, index, chunk)
        out += struct.pack("<I", len(chunk)) + chunk
    return bytes(out)
