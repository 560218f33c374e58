"""Tests for decompression, the inner header and protected XML values."""

import base64
import gzip
import struct
from xml.etree import ElementTree

import pytest
from conftest import SAMPLE_ENTRIES, STREAM_KEY, make_inner_header, make_xml

from kdbxreader.core.ciphers import INNER_STREAM_CHACHA20, INNER_STREAM_NONE, InnerStream
from kdbxreader.core.errors import (
    UTF8,
    Base64,
    Compression,
    DatabaseIntegrityError,
    IncompleteInnerHeader,
    InvalidCompressionSuite,
    InvalidInnerHeaderEntry,
    XMLParsing,
)
from kdbxreader.core.formats import COMPRESSION_GZIP, COMPRESSION_NONE
from kdbxreader.core.payload import decompress, parse_inner_header, parse_xml, unprotect


def _reason(func, *args):
    with pytest.raises(DatabaseIntegrityError) as info:
        func(*args)
    return info.value.reason


class TestDecompress:
    def test_none(self):
        assert decompress(b"raw", COMPRESSION_NONE) == b"raw"

    def test_gzip(self):
        assert decompress(gzip.compress(b"payload" * 50), COMPRESSION_GZIP) == b"payload" * 50

    def test_corrupt_gzip_is_integrity_failure(self):
        reason = _reason(decompress, b"definitely not gzip", COMPRESSION_GZIP)
        assert reason == Compression()

    def test_truncated_gzip(self):
        data = gzip.compress(b"payload" * 50)[:-10]
        assert _reason(decompress, data, COMPRESSION_GZIP) == Compression()

    def test_unknown_suite(self):
        assert _reason(decompress, b"", 5) == InvalidCompressionSuite(5)


class TestInnerHeader:
    def test_parse(self):
        data = make_inner_header(extra=[(3, b"\x01attachment")]) + b"<xml/>"
        header, offset = parse_inner_header(data)
        assert header.stream_id == INNER_STREAM_CHACHA20
        assert header.stream_key == STREAM_KEY
        assert header.binaries == (b"attachment",)
        assert data[offset:] == b"<xml/>"

    def test_missing_stream_key(self):
        data = struct.pack("<BII", 1, 4, INNER_STREAM_CHACHA20) + struct.pack("<BI", 0, 0)
        assert _reason(parse_inner_header, data) == IncompleteInnerHeader("InnerRandomStreamKey")

    def test_missing_stream_id(self):
        data = struct.pack("<BI", 2, 4) + b"keyk" + struct.pack("<BI", 0, 0)
        assert _reason(parse_inner_header, data) == IncompleteInnerHeader("InnerRandomStreamID")

    def test_truncated(self):
        data = make_inner_header()[:-3]
        assert _reason(parse_inner_header, data) == IncompleteInnerHeader("EndOfHeader")

    def test_truncated_inside_stream_key(self):
        data = make_inner_header()[:20]
        assert _reason(parse_inner_header, data) == IncompleteInnerHeader("InnerRandomStreamKey")

    def test_unknown_entry(self):
        data = struct.pack("<BI", 9, 1) + b"x" + make_inner_header()
        reason = _reason(parse_inner_header, data)
        assert reason == InvalidInnerHeaderEntry(9)

    def test_missized_stream_id(self):
        data = struct.pack("<BI", 1, 2) + b"\x03\x00" + struct.pack("<BI", 2, 1) + b"k"
        data += struct.pack("<BI", 0, 0)
        assert _reason(parse_inner_header, data) == InvalidInnerHeaderEntry(1)


class TestXML:
    def test_parse(self):
        root = parse_xml(make_xml(SAMPLE_ENTRIES, InnerStream(INNER_STREAM_NONE, b"")))
        assert root.tag == "KeePassFile"

    def test_malformed(self):
        with pytest.raises(DatabaseIntegrityError) as info:
            parse_xml(b"<KeePassFile><Meta>")
        assert isinstance(info.value.reason, XMLParsing)
        assert isinstance(info.value.source(), ElementTree.ParseError)

    def test_invalid_utf8(self):
        assert isinstance(_reason(parse_xml, b"\xff\xfe<a/>"), UTF8)


class TestUnprotect:
    def test_unmasks_in_document_order(self):
        root = parse_xml(make_xml(SAMPLE_ENTRIES, InnerStream(INNER_STREAM_CHACHA20, STREAM_KEY)))
        count = unprotect(root, InnerStream(INNER_STREAM_CHACHA20, STREAM_KEY))
        assert count == len(SAMPLE_ENTRIES)
        values = [v for v in root.iter("Value") if v.text in {p for _, p in SAMPLE_ENTRIES}]
        assert [v.text for v in values] == [p for _, p in SAMPLE_ENTRIES]
        assert all("Protected" not in v.attrib for v in root.iter("Value"))

    def test_unprotected_values_untouched(self):
        root = ElementTree.fromstring("<Root><Value>plain</Value></Root>")
        assert unprotect(root, InnerStream(INNER_STREAM_CHACHA20, STREAM_KEY)) == 0
        assert root.find("Value").text == "plain"

    def test_bad_base64(self):
        root = ElementTree.fromstring('<Root><Value Protected="True">!!not base64!!</Value></Root>')
        with pytest.raises(DatabaseIntegrityError) as info:
            unprotect(root, InnerStream(INNER_STREAM_NONE, b""))
        assert isinstance(info.value.reason, Base64)

    def test_masked_value_not_utf8(self):
        text = base64.b64encode(b"\xff\xff").decode()
        root = ElementTree.fromstring(f'<Root><Value Protected="True">{text}</Value></Root>')
        with pytest.raises(DatabaseIntegrityError) as info:
            unprotect(root, InnerStream(INNER_STREAM_NONE, b""))
        assert isinstance(info.value.reason, UTF8)
