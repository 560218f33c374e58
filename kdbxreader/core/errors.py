"""Structured error types for kdbxreader.

Every failure while opening a KDBX database surfaces as exactly one
exception from a closed, three-tier taxonomy. Each tier carries a single
immutable *reason* (a frozen dataclass) picked from a fixed set, so callers
can branch on the reason type instead of parsing messages.

Hierarchy::

    KdbxError (Exception)
    +-- CryptoError             KDF / symmetric-cipher primitive failures
    +-- DatabaseIntegrityError  container format, KDF negotiation, payload
    |                           decoding; wraps CryptoError
    +-- Error                   operation outcome: IO, incorrect key,
                                invalid key file; wraps the tier above

Lifting is strictly one tier at a time::

    argon2 / cryptography failure -> CryptoError
    CryptoError, XML, base64, UTF-8 -> DatabaseIntegrityError
    DatabaseIntegrityError, OSError -> Error
"""

from __future__ import annotations

import binascii
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from xml.etree.ElementTree import ParseError

from argon2.exceptions import Argon2Error


def _cause_text(e: BaseException) -> str:
    # InvalidTag and friends carry no message
    return str(e) or type(e).__name__


class KdbxError(Exception):
    """Base class for all kdbxreader errors."""

    prefix = "KDBX error"
    reasons: tuple[type, ...] = ()

    def __init__(self, reason):
        if not isinstance(reason, self.reasons):
            raise TypeError(
                f"{type(reason).__name__} is not a {type(self).__name__} reason"
            )
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.prefix}: {self.reason.describe()}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reason!r})"

    def source(self) -> BaseException | None:
        """Return the immediate wrapped cause, or ``None`` at a leaf."""
        return self.reason.source()


@dataclass(frozen=True)
class _Leaf:
    """Reason without a wrapped cause."""

    def source(self) -> BaseException | None:
        return None


@dataclass(frozen=True)
class _Wrapping:
    """Reason that retains the failure it was lifted from."""

    e: BaseException

    def source(self) -> BaseException | None:
        return self.e


# ---------------------------------------------------------------------------
# Primitive failures (KDF, symmetric ciphers)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Argon2Failure(_Wrapping):
    def describe(self) -> str:
        return f"Problem deriving key with Argon2: {_cause_text(self.e)}"


@dataclass(frozen=True)
class InvalidKeyLength(_Wrapping):
    def describe(self) -> str:
        return f"Invalid key length: {_cause_text(self.e)}"


@dataclass(frozen=True)
class InvalidKeyIvLength(_Wrapping):
    def describe(self) -> str:
        return f"Invalid key / IV length: {_cause_text(self.e)}"


@dataclass(frozen=True)
class InvalidKeyNonceLength(_Wrapping):
    def describe(self) -> str:
        return f"Invalid key / nonce length: {_cause_text(self.e)}"


@dataclass(frozen=True)
class BlockModeFailure(_Wrapping):
    """Padding or authentication check failed in a block-cipher mode."""

    def describe(self) -> str:
        return f"Block mode error: {_cause_text(self.e)}"


CRYPTO_REASONS = (
    Argon2Failure,
    InvalidKeyLength,
    InvalidKeyIvLength,
    InvalidKeyNonceLength,
    BlockModeFailure,
)


class CryptoError(KdbxError):
    """A key-derivation or cipher primitive rejected its input."""

    prefix = "Crypto error"
    reasons = CRYPTO_REASONS

    @classmethod
    def from_argon2(cls, e: Argon2Error) -> CryptoError:
        return cls(Argon2Failure(e))

    @classmethod
    def from_key_length(cls, e: ValueError) -> CryptoError:
        return cls(InvalidKeyLength(e))

    @classmethod
    def from_key_iv_length(cls, e: ValueError) -> CryptoError:
        return cls(InvalidKeyIvLength(e))

    @classmethod
    def from_key_nonce_length(cls, e: ValueError) -> CryptoError:
        return cls(InvalidKeyNonceLength(e))

    @classmethod
    def from_block_mode(cls, e: Exception) -> CryptoError:
        return cls(BlockModeFailure(e))


# ---------------------------------------------------------------------------
# Content integrity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Compression(_Leaf):
    def describe(self) -> str:
        return "(De)compression error"


@dataclass(frozen=True)
class CryptoFailure(_Wrapping):
    e: CryptoError

    def describe(self) -> str:
        return f"Cryptography error: {self.e}"


@dataclass(frozen=True)
class HeaderHashMismatch(_Leaf):
    def describe(self) -> str:
        return "Hash mismatch when verifying header"


@dataclass(frozen=True)
class BlockHashMismatch(_Leaf):
    block_index: int

    def describe(self) -> str:
        return f"Error when verifying integrity of block {self.block_index}"


@dataclass(frozen=True)
class InvalidKDBXIdentifier(_Leaf):
    def describe(self) -> str:
        return "Invalid KDBX identifier"


@dataclass(frozen=True)
class InvalidKDBXVersion(_Leaf):
    version: int
    file_major_version: int
    file_minor_version: int

    def describe(self) -> str:
        return (
            f"Invalid KDBX version (expected major version {self.version}, "
            f"file version {self.file_major_version}.{self.file_minor_version})"
        )


@dataclass(frozen=True)
class InvalidOuterHeaderEntry(_Leaf):
    entry_type: int

    def describe(self) -> str:
        return f"Encountered an invalid outer header entry with type {self.entry_type}"


@dataclass(frozen=True)
class IncompleteOuterHeader(_Leaf):
    missing_field: str

    def describe(self) -> str:
        return f"Missing field in outer header: {self.missing_field}"


@dataclass(frozen=True)
class InvalidInnerHeaderEntry(_Leaf):
    entry_type: int

    def describe(self) -> str:
        return f"Encountered an invalid inner header entry with type {self.entry_type}"


@dataclass(frozen=True)
class IncompleteInnerHeader(_Leaf):
    missing_field: str

    def describe(self) -> str:
        return f"Missing field in inner header: {self.missing_field}"


@dataclass(frozen=True)
class InvalidKDFVersion(_Leaf):
    version: int

    def describe(self) -> str:
        return f"Encountered an invalid KDF version: {self.version}"


@dataclass(frozen=True)
class InvalidKDFUUID(_Leaf):
    uuid: bytes

    def describe(self) -> str:
        return f"Encountered an invalid KDF UUID: {bytes(self.uuid).hex()}"


@dataclass(frozen=True)
class MissingKDFParams(_Leaf):
    key: str

    def describe(self) -> str:
        return f"Missing field in KDF parameters: {self.key}"


@dataclass(frozen=True)
class MistypedKDFParam(_Leaf):
    key: str

    def describe(self) -> str:
        return f"KDF parameter {self.key} has wrong type"


@dataclass(frozen=True)
class InvalidOuterCipherID(_Leaf):
    cid: bytes

    def describe(self) -> str:
        return f"Encountered an invalid outer cipher ID: {bytes(self.cid).hex()}"


@dataclass(frozen=True)
class InvalidInnerCipherID(_Leaf):
    cid: int

    def describe(self) -> str:
        return f"Encountered an invalid inner cipher ID: {self.cid}"


@dataclass(frozen=True)
class InvalidCompressionSuite(_Leaf):
    cid: int

    def describe(self) -> str:
        return f"Encountered an invalid compression suite ID: {self.cid}"


@dataclass(frozen=True)
class InvalidVariantDictionaryVersion(_Leaf):
    version: int

    def describe(self) -> str:
        return (
            f"Encountered a VariantDictionary with an invalid version: "
            f"{self.version} ({self.version:#06x})"
        )


@dataclass(frozen=True)
class InvalidVariantDictionaryValueType(_Leaf):
    value_type: int

    def describe(self) -> str:
        return f"Encountered an invalid VariantDictionary value type: {self.value_type}"


@dataclass(frozen=True)
class XMLParsing(_Wrapping):
    e: ParseError

    def describe(self) -> str:
        return f"Encountered an error when parsing the inner XML payload: {_cause_text(self.e)}"


@dataclass(frozen=True)
class Base64(_Wrapping):
    e: binascii.Error

    def describe(self) -> str:
        return f"Encountered an error when parsing a base64-encoded string: {_cause_text(self.e)}"


@dataclass(frozen=True)
class UTF8(_Wrapping):
    e: UnicodeDecodeError

    def describe(self) -> str:
        return f"Encountered an error when parsing a UTF-8 formatted string: {_cause_text(self.e)}"


INTEGRITY_REASONS = (
    Compression,
    CryptoFailure,
    HeaderHashMismatch,
    BlockHashMismatch,
    InvalidKDBXIdentifier,
    InvalidKDBXVersion,
    InvalidOuterHeaderEntry,
    IncompleteOuterHeader,
    InvalidInnerHeaderEntry,
    IncompleteInnerHeader,
    InvalidKDFVersion,
    InvalidKDFUUID,
    MissingKDFParams,
    MistypedKDFParam,
    InvalidOuterCipherID,
    InvalidInnerCipherID,
    InvalidCompressionSuite,
    InvalidVariantDictionaryVersion,
    InvalidVariantDictionaryValueType,
    XMLParsing,
    Base64,
    UTF8,
)


class DatabaseIntegrityError(KdbxError):
    """The container is structurally or cryptographically invalid."""

    prefix = "Database integrity error"
    reasons = INTEGRITY_REASONS

    @classmethod
    def from_crypto(cls, e: CryptoError) -> DatabaseIntegrityError:
        return cls(CryptoFailure(e))

    @classmethod
    def from_xml(cls, e: ParseError) -> DatabaseIntegrityError:
        return cls(XMLParsing(e))

    @classmethod
    def from_base64(cls, e: binascii.Error) -> DatabaseIntegrityError:
        return cls(Base64(e))

    @classmethod
    def from_utf8(cls, e: UnicodeDecodeError) -> DatabaseIntegrityError:
        return cls(UTF8(e))


# ---------------------------------------------------------------------------
# Operation outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IOFailure(_Wrapping):
    e: OSError

    def describe(self) -> str:
        return f"IO error: {_cause_text(self.e)}"


@dataclass(frozen=True)
class DatabaseIntegrity(_Wrapping):
    e: DatabaseIntegrityError

    def describe(self) -> str:
        return str(self.e)

    def source(self) -> BaseException | None:
        # Transparent: the wrapped error's text is already part of ours.
        return self.e.source()


@dataclass(frozen=True)
class IncorrectKey(_Leaf):
    def describe(self) -> str:
        return "Incorrect key specified"


@dataclass(frozen=True)
class InvalidKeyFile(_Leaf):
    def describe(self) -> str:
        return "Keyfile format invalid"


OUTCOME_REASONS = (IOFailure, DatabaseIntegrity, IncorrectKey, InvalidKeyFile)


class Error(KdbxError):
    """Terminal result of a failed open / decode / decrypt."""

    reasons = OUTCOME_REASONS

    @classmethod
    def from_integrity(cls, e: DatabaseIntegrityError) -> Error:
        return cls(DatabaseIntegrity(e))

    @classmethod
    def from_io(cls, e: OSError) -> Error:
        return cls(IOFailure(e))

    @classmethod
    def from_crypto(cls, e: CryptoError) -> Error:
        return cls.from_integrity(DatabaseIntegrityError.from_crypto(e))

    @property
    def is_credential_problem(self) -> bool:
        return isinstance(self.reason, (IncorrectKey, InvalidKeyFile))


# ---------------------------------------------------------------------------
# Conversion and traversal
# ---------------------------------------------------------------------------

def lift(exc: BaseException) -> Error:
    """Widen any supported failure all the way into the :class:`Error` tier.

    ``ValueError`` from cipher primitives is ambiguous and must be
    classified with one of the ``CryptoError.from_*`` constructors first.
    """
    if isinstance(exc, Error):
        return exc
    if isinstance(exc, DatabaseIntegrityError):
        return Error.from_integrity(exc)
    if isinstance(exc, CryptoError):
        return Error.from_crypto(exc)
    if isinstance(exc, Argon2Error):
        return Error.from_crypto(CryptoError.from_argon2(exc))
    if isinstance(exc, ParseError):
        return Error.from_integrity(DatabaseIntegrityError.from_xml(exc))
    if isinstance(exc, UnicodeDecodeError):
        return Error.from_integrity(DatabaseIntegrityError.from_utf8(exc))
    if isinstance(exc, binascii.Error):
        return Error.from_integrity(DatabaseIntegrityError.from_base64(exc))
    if isinstance(exc, OSError):
        return Error.from_io(exc)
    raise TypeError(f"No conversion from {type(exc).__name__} to Error")


@contextmanager
def integrity_boundary() -> Iterator[None]:
    """Lift primitive and payload-decoding failures into DatabaseIntegrityError."""
    try:
        yield
    except CryptoError as exc:
        raise DatabaseIntegrityError.from_crypto(exc) from exc
    except ParseError as exc:
        raise DatabaseIntegrityError.from_xml(exc) from exc
    except UnicodeDecodeError as exc:
        raise DatabaseIntegrityError.from_utf8(exc) from exc
    except binascii.Error as exc:
        raise DatabaseIntegrityError.from_base64(exc) from exc


@contextmanager
def outcome_boundary() -> Iterator[None]:
    """Lift integrity and IO failures into the operation-outcome tier."""
    try:
        yield
    except DatabaseIntegrityError as exc:
        raise Error.from_integrity(exc) from exc
    except OSError as exc:
        raise Error.from_io(exc) from exc


def next_cause(err: BaseException) -> BaseException | None:
    """Immediate cause of *err*; library exceptions are leaves."""
    if isinstance(err, KdbxError):
        return err.source()
    return None


def iter_causes(err: BaseException) -> Iterator[BaseException]:
    """Yield the causes of *err*, nearest first, excluding *err* itself."""
    cause = next_cause(err)
    while cause is not None:
        yield cause
        cause = next_cause(cause)


def render_chain(err: BaseException) -> str:
    lines = [str(err) or type(err).__name__]
    for cause in iter_causes(err):
        lines.append(f"  caused by: {_cause_text(cause)}")
    return "\n".join(lines)
