"""
Decrypted payload handling: decompression, inner header, XML document.

The decrypted (and decompressed) payload is::

    inner header entries [type u8][size u32][data], ending with type 0
    UTF-8 XML document

Protected values (``<Value Protected="True">``) are base64 text masked with
the inner random stream; they are unmasked in document order.
"""

from __future__ import annotations

import base64
import gzip
import struct
import zlib
from dataclasses import dataclass, field
from xml.etree import ElementTree

from .ciphers import InnerStream
from .errors import (
    Compression,
    DatabaseIntegrityError,
    IncompleteInnerHeader,
    InvalidCompressionSuite,
    InvalidInnerHeaderEntry,
    integrity_boundary,
)
from .formats import COMPRESSION_GZIP, COMPRESSION_NONE
from .observability import get_logger

logger = get_logger()

# Inner header entry types
INNER_END = 0
INNER_STREAM_ID = 1
INNER_STREAM_KEY = 2
INNER_BINARY = 3

INNER_FIELD_NAMES = {
    INNER_STREAM_ID: "InnerRandomStreamID",
    INNER_STREAM_KEY: "InnerRandomStreamKey",
}


@dataclass(frozen=True)
class InnerHeader:
    stream_id: int
    stream_key: bytes
    binaries: tuple[bytes, ...] = field(default=())


def decompress(data: bytes, compression: int) -> bytes:
    """Undo the CompressionFlags transform."""
    if compression == COMPRESSION_NONE:
        return data
    if compression != COMPRESSION_GZIP:
        raise DatabaseIntegrityError(InvalidCompressionSuite(compression))
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        # gzip.BadGzipFile is an OSError; it must not leave as an IO failure
        raise DatabaseIntegrityError(Compression()) from exc


def parse_inner_header(data: bytes) -> tuple[InnerHeader, int]:
    """Parse the inner header. Returns ``(header, offset_of_xml)``."""
    fields: dict[int, bytes] = {}
    binaries: list[bytes] = []
    offset = 0
    while True:
        if offset + 5 > len(data):
            raise DatabaseIntegrityError(IncompleteInnerHeader("EndOfHeader"))
        entry_type, size = struct.unpack_from("<BI", data, offset)
        offset += 5
        if offset + size > len(data):
            raise DatabaseIntegrityError(
                IncompleteInnerHeader(INNER_FIELD_NAMES.get(entry_type, "EndOfHeader"))
            )
        value = data[offset : offset + size]
        offset += size

        if entry_type == INNER_END:
            break
        if entry_type == INNER_BINARY:
            # First byte holds flags (bit 0: protected in memory)
            binaries.append(value[1:])
        elif entry_type in INNER_FIELD_NAMES:
            fields[entry_type] = value
        else:
            raise DatabaseIntegrityError(InvalidInnerHeaderEntry(entry_type))

    for entry_type, name in INNER_FIELD_NAMES.items():
        if entry_type not in fields:
            raise DatabaseIntegrityError(IncompleteInnerHeader(name))

    raw_id = fields[INNER_STREAM_ID]
    if len(raw_id) != 4:
        raise DatabaseIntegrityError(InvalidInnerHeaderEntry(INNER_STREAM_ID))

    header = InnerHeader(
        stream_id=struct.unpack("<I", raw_id)[0],
        stream_key=fields[INNER_STREAM_KEY],
        binaries=tuple(binaries),
    )
    return header, offset


def parse_xml(data: bytes) -> ElementTree.Element:
    """Decode and parse the XML document.

    UTF-8 and XML failures leave as DatabaseIntegrityError.
    """
    with integrity_boundary():
        text = data.decode("utf-8")
        return ElementTree.fromstring(text)


def unprotect(root: ElementTree.Element, stream: InnerStream) -> int:
    """Unmask protected values in place. Returns how many were unmasked."""
    count = 0
    with integrity_boundary():
        for value in root.iter("Value"):
            if value.get("Protected") != "True":
                continue
            masked = base64.b64decode(value.text or "", validate=True)
            value.text = stream.apply(masked).decode("utf-8")
            del value.attrib["Protected"]
            count += 1
    logger.debug("unmasked %d protected values", count)
    return count
