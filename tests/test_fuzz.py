"""Fuzz tests for the binary parsers using Hypothesis.

Every parser must either succeed or raise the error tier it documents;
no other exception type may escape on arbitrary input.
"""

import struct

import pytest
from conftest import PASSWORD, build_kdbx
from hypothesis import given, settings, strategies as st

from kdbxreader.core.blocks import hmac_base_key, read_blocks
from kdbxreader.core.errors import DatabaseIntegrityError, Error
from kdbxreader.core.formats import (
    PREAMBLE_FORMAT,
    SIGNATURE_1,
    SIGNATURE_2,
    VariantDictionary,
    parse_outer_header,
)
from kdbxreader.core.keys import CompositeKey
from kdbxreader.core.payload import parse_inner_header
from kdbxreader.core.pipeline import decode_database

KDBX4_PREAMBLE = struct.pack(PREAMBLE_FORMAT, SIGNATURE_1, SIGNATURE_2, 1, 4)
BASE_KEY = hmac_base_key(b"\x00" * 32, b"\x00" * 32)

KEY = CompositeKey(password=PASSWORD)
VALID_FILE = build_kdbx(KEY)


class TestOuterHeaderFuzz:
    @given(st.binary(max_size=512))
    @settings(max_examples=500)
    def test_arbitrary_header_body(self, body: bytes):
        """Random entries after a valid preamble only ever fail as integrity errors."""
        try:
            header, offset = parse_outer_header(KDBX4_PREAMBLE + body)
        except DatabaseIntegrityError:
            return
        assert header.major_version == 4
        assert offset <= len(KDBX4_PREAMBLE) + len(body)

    @given(st.binary(max_size=256))
    @settings(max_examples=300)
    def test_arbitrary_variant_dictionary(self, data: bytes):
        try:
            VariantDictionary.parse(data)
        except DatabaseIntegrityError:
            pass


class TestPayloadFuzz:
    @given(st.binary(max_size=512))
    @settings(max_examples=300)
    def test_arbitrary_block_stream(self, data: bytes):
        with pytest.raises(DatabaseIntegrityError):
            read_blocks(data, BASE_KEY)

    @given(st.binary(max_size=256))
    @settings(max_examples=300)
    def test_arbitrary_inner_header(self, data: bytes):
        try:
            parse_inner_header(data)
        except DatabaseIntegrityError:
            pass


class TestDatabaseFuzz:
    @given(st.binary(max_size=256))
    @settings(max_examples=300)
    def test_arbitrary_file(self, data: bytes):
        with pytest.raises(Error):
            decode_database(data, KEY)

    @given(st.data())
    @settings(max_examples=200, deadline=None)
    def test_any_flipped_byte_is_detected(self, data):
        """Every byte of a KDBX 4 file is covered by a hash or an HMAC."""
        index = data.draw(st.integers(min_value=0, max_value=len(VALID_FILE) - 1))
        mask = data.draw(st.integers(min_value=1, max_value=255))
        tampered = bytearray(VALID_FILE)
        tampered[index] ^= mask
        with pytest.raises(Error):
            decode_database(bytes(tampered), KEY)
