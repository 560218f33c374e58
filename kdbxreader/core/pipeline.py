"""
Decoding pipeline: outer header, key derivation, authentication,
decryption, decompression, inner header and XML.

This is the main API surface. Every stage raises the narrowest error it can;
the pipeline lifts what crosses its boundary so callers only ever see a
single :class:`~kdbxreader.core.errors.Error`.

Authentication order:
  1. HeaderHash (unkeyed SHA-256): mismatch means corruption.
  2. KDF, then HeaderHMAC: mismatch means the credentials are wrong.
  3. Block HMACs, cipher, decompression, inner header, XML.
So ``IncorrectKey`` is only reported for a structurally sound header.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from pathlib import Path
from xml.etree import ElementTree

from .blocks import header_hmac, hmac_base_key, read_blocks
from .ciphers import InnerStream, outer_cipher
from .errors import Error, IncorrectKey, integrity_boundary, outcome_boundary
from .formats import OuterHeader, parse_outer_header, read_header_checks, verify_header_hash
from .kdf import kdf_from_parameters
from .keys import CompositeKey, load_keyfile
from .observability import get_logger
from .payload import InnerHeader, decompress, parse_inner_header, parse_xml, unprotect

logger = get_logger()


@dataclass
class Database:
    """A decoded database: both headers and the unmasked XML document."""

    header: OuterHeader
    inner_header: InnerHeader
    root: ElementTree.Element

    @property
    def name(self) -> str:
        return self.root.findtext("Meta/DatabaseName") or ""

    def iter_entries(self):
        """Yield current entries (history snapshots excluded)."""
        for group in self.root.iter("Group"):
            yield from group.findall("Entry")

    @property
    def entry_count(self) -> int:
        return sum(1 for _ in self.iter_entries())


def decrypt_database(data: bytes, key: CompositeKey) -> tuple[OuterHeader, bytes]:
    """
    Authenticate and decrypt a KDBX 4 file.

    Returns ``(outer_header, payload)`` where ``payload`` is the decompressed
    inner header followed by the XML document.

    Raises:
        Error: IncorrectKey when the header HMAC does not verify,
               DatabaseIntegrity for everything the file itself gets wrong.
    """
    with outcome_boundary():
        header, offset = parse_outer_header(data)
        header_hash, stored_hmac, offset = read_header_checks(data, offset)
        verify_header_hash(header, header_hash)

        kdf = kdf_from_parameters(header.kdf_parameters)
        cipher = outer_cipher(header.cipher_id)
        logger.debug(
            "KDBX %d.%d, cipher %s, KDF %s",
            header.major_version, header.minor_version, cipher.name, kdf.name,
        )

        with integrity_boundary():
            transformed = kdf.derive(key.raw())

        base_key = hmac_base_key(header.master_seed, transformed)
        if not hmac.compare_digest(header_hmac(base_key, header.raw), stored_hmac):
            raise Error(IncorrectKey())

        ciphertext = read_blocks(data[offset:], base_key)
        encryption_key = hashlib.sha256(header.master_seed + transformed).digest()
        with integrity_boundary():
            plaintext = cipher.decrypt(encryption_key, header.encryption_iv, ciphertext)

        return header, decompress(plaintext, header.compression)


def decode_database(data: bytes, key: CompositeKey) -> Database:
    """Decrypt *data* and parse its inner header and XML document."""
    header, payload = decrypt_database(data, key)
    with outcome_boundary():
        inner, offset = parse_inner_header(payload)
        root = parse_xml(payload[offset:])
        unprotect(root, InnerStream(inner.stream_id, inner.stream_key))
    return Database(header=header, inner_header=inner, root=root)


def open_database(
    path: str | Path,
    password: str | None = None,
    keyfile: str | Path | None = None,
) -> Database:
    """
    Read a database (and optional key file) from disk and decode it.

    Raises:
        Error: for anything wrong with the files or the credentials.
        ValueError: if neither *password* nor *keyfile* is given. This is a
            calling mistake, not a property of the database, so it is not
            part of the error taxonomy.
    """
    with outcome_boundary():
        with open(path, "rb") as f:
            data = f.read()
        keyfile_component = load_keyfile(keyfile) if keyfile is not None else None
    key = CompositeKey(password=password, keyfile=keyfile_component)
    return decode_database(data, key)
