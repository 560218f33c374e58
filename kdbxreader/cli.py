"""
Command-line interface.

Opens a KDBX 4 database and prints a short summary (or the decrypted XML).
Passwords are read interactively (never from argv) unless piped via stdin.

Exit codes:
    0  success
    2  incorrect key or invalid key file
    3  database is corrupted or unsupported
    4  database or key file could not be read
"""

from __future__ import annotations

import argparse
import getpass
import sys
from xml.etree import ElementTree

from .core.config import apply_config_defaults, load_config
from .core.errors import (
    DatabaseIntegrity,
    Error,
    IncorrectKey,
    InvalidKeyFile,
    IOFailure,
    render_chain,
)
from .core.observability import configure_logging, get_logger
from .core.pipeline import open_database

EXIT_OK = 0
EXIT_CREDENTIALS = 2
EXIT_CORRUPTED = 3
EXIT_INACCESSIBLE = 4

logger = get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kdbxreader",
        description="Open and inspect a KeePass KDBX 4 database",
    )
    parser.add_argument("database", help="Path to the .kdbx file")
    parser.add_argument(
        "-k", "--keyfile",
        help="Key file to combine with the password",
    )
    parser.add_argument(
        "--no-password",
        action="store_true",
        help="Open with the key file only",
    )
    parser.add_argument(
        "--xml",
        action="store_true",
        help="Print the decrypted XML document instead of a summary",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: WARNING, or KDBXREADER_LOG_LEVEL)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_const",
        const="DEBUG",
        dest="log_level",
        help="Shortcut for --log-level DEBUG",
    )
    return parser


def _read_password(prompt: str = "Password: ") -> str:
    """Read the password from the terminal, or one line of stdin without a TTY."""
    try:
        return getpass.getpass(prompt)
    except OSError:
        return sys.stdin.readline().rstrip("\n")


def _print_status(msg: str, error: bool = False) -> None:
    stream = sys.stderr if error else sys.stdout
    print(msg, file=stream)


def _exit_code(err: Error) -> int:
    if isinstance(err.reason, (IncorrectKey, InvalidKeyFile)):
        return EXIT_CREDENTIALS
    if isinstance(err.reason, DatabaseIntegrity):
        return EXIT_CORRUPTED
    if isinstance(err.reason, IOFailure):
        return EXIT_INACCESSIBLE
    raise TypeError(f"unhandled outcome {err.reason!r}")


def _report(err: Error) -> None:
    if isinstance(err.reason, IncorrectKey):
        headline = "The password or key file is incorrect."
    elif isinstance(err.reason, InvalidKeyFile):
        headline = "The key file is not in a recognised format."
    elif isinstance(err.reason, DatabaseIntegrity):
        headline = "The database appears to be corrupted."
    else:
        headline = "The file could not be read."
    _print_status(headline, error=True)
    _print_status(render_chain(err), error=True)


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI and return its exit code."""
    parser = _build_parser()
    args = apply_config_defaults(parser.parse_args(argv), load_config())
    configure_logging(args.log_level)

    if args.no_password and not args.keyfile:
        _print_status("Error: --no-password requires --keyfile", error=True)
        return 1
    password = None if args.no_password else _read_password()

    try:
        db = open_database(args.database, password=password, keyfile=args.keyfile)
    except Error as err:
        logger.debug("open failed: %r", err)
        _report(err)
        return _exit_code(err)

    if args.xml:
        print(ElementTree.tostring(db.root, encoding="unicode"))
    else:
        header = db.header
        print(f"Database:  {db.name or '(unnamed)'}")
        print(f"Format:    KDBX {header.major_version}.{header.minor_version}")
        print(f"Entries:   {db.entry_count}")
    return EXIT_OK


def main() -> None:
    sys.exit(run_cli())
