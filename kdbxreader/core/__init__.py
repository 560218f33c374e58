"""Core KDBX decoding modules."""

from .errors import (  # noqa: F401
    CryptoError,
    DatabaseIntegrityError,
    Error,
    KdbxError,
    iter_causes,
    lift,
    render_chain,
)
