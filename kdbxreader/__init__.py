"""Read KeePass KDBX 4 databases with a closed, three-tier error taxonomy."""

from .core.errors import (  # noqa: F401
    CryptoError,
    DatabaseIntegrityError,
    Error,
    KdbxError,
    iter_causes,
    lift,
    render_chain,
)
from .core.keys import CompositeKey  # noqa: F401
from .core.pipeline import Database, decode_database, decrypt_database, open_database  # noqa: F401

__version__ = "0.1.0"
