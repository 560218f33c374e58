"""
Composite key construction.

The composite key is SHA-256 over the concatenated component hashes:
SHA-256 of the UTF-8 password, then the key-file key. Key files come in
four shapes, tried in order:

  * XML ``<KeyFile>`` version 1.0 (base64 ``Data``) or 2.0 (hex ``Data``
    with a ``Hash`` attribute holding the first 4 bytes of its SHA-256)
  * exactly 32 raw bytes
  * exactly 64 hexadecimal characters
  * anything else: SHA-256 of the file content
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
from pathlib import Path
from xml.etree import ElementTree

from .errors import Error, InvalidKeyFile
from .observability import get_logger

_HEX64 = re.compile(rb"[0-9a-fA-F]{64}")

logger = get_logger()


def _xml_key(root: ElementTree.Element) -> bytes:
    """Extract the key from a parsed ``<KeyFile>`` document."""
    data = root.find("Key/Data")
    if data is None or not (data.text or "").strip():
        raise Error(InvalidKeyFile())
    version = (root.findtext("Meta/Version") or "1.0").strip()
    text = "".join(data.text.split())

    if version.startswith("2."):
        try:
            key = bytes.fromhex(text)
        except ValueError:
            raise Error(InvalidKeyFile()) from None
        expected = data.get("Hash")
        if expected is not None:
            actual = hashlib.sha256(key).digest()[:4].hex().upper()
            if not hmac.compare_digest(actual, "".join(expected.split()).upper()):
                raise Error(InvalidKeyFile())
        return key

    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error:
        raise Error(InvalidKeyFile()) from None


def keyfile_key(content: bytes) -> bytes:
    """Turn raw key-file content into its 32-byte key component.

    Raises ``Error(InvalidKeyFile)`` for an empty file or an XML key file
    that fails its own format check.
    """
    if not content:
        raise Error(InvalidKeyFile())

    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError:
        root = None
    if root is not None and root.tag == "KeyFile":
        logger.debug("using XML key file")
        return _xml_key(root)

    if len(content) == 32:
        return bytes(content)
    if _HEX64.fullmatch(content):
        return bytes.fromhex(content.decode("ascii"))
    return hashlib.sha256(content).digest()


def load_keyfile(path: str | Path) -> bytes:
    """Read and decode a key file. ``OSError`` propagates to the caller."""
    with open(path, "rb") as f:
        return keyfile_key(f.read())


class CompositeKey:
    """Password and/or key-file key combined into the KDF input."""

    def __init__(self, password: str | None = None, keyfile: bytes | None = None):
        if password is None and keyfile is None:
            raise ValueError("A composite key needs a password, a key file, or both")
        self.password = password
        self.keyfile = keyfile

    @classmethod
    def from_keyfile_content(cls, content: bytes, password: str | None = None) -> CompositeKey:
        return cls(password=password, keyfile=keyfile_key(content))

    def raw(self) -> bytes:
        parts = b""
        if self.password is not None:
            parts += hashlib.sha256(self.password.encode("utf-8")).digest()
        if self.keyfile is not None:
            parts += self.keyfile
        return hashlib.sha256(parts).digest()
