"""
Symmetric cipher implementations.

Outer ciphers decrypt the payload behind the HMAC block stream; the inner
stream cipher unmasks protected XML values. Primitive failures from the
``cryptography`` package are classified into :class:`CryptoError` here,
at the point where the failing call is made.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CryptoError, DatabaseIntegrityError, InvalidInnerCipherID, InvalidOuterCipherID
from .formats import CIPHER_AES256, CIPHER_CHACHA20

# Inner random stream IDs
INNER_STREAM_NONE = 0
INNER_STREAM_SALSA20 = 2
INNER_STREAM_CHACHA20 = 3


def _chacha20(key: bytes, nonce: bytes) -> Cipher:
    """ChaCha20 with a 96-bit nonce and the block counter starting at zero."""
    try:
        return Cipher(algorithms.ChaCha20(key, b"\x00" * 4 + nonce), mode=None)
    except ValueError as exc:
        raise CryptoError.from_key_nonce_length(exc) from exc


class OuterCipher(ABC):
    """Abstract base for payload ciphers."""

    @property
    @abstractmethod
    def cipher_id(self) -> bytes:
        """UUID stored in the CipherID header field."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable cipher name."""

    @abstractmethod
    def encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """Encrypt *plaintext*. Raises CryptoError."""

    @abstractmethod
    def decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        """Decrypt *ciphertext*. Raises CryptoError."""


class AES256CBC(OuterCipher):
    """AES-256 in CBC mode with PKCS#7 padding."""

    cipher_id = CIPHER_AES256
    name = "AES-256-CBC"
    iv_size = 16

    def _cipher(self, key: bytes, iv: bytes) -> Cipher:
        try:
            algorithm = algorithms.AES(key)
        except ValueError as exc:
            raise CryptoError.from_key_length(exc) from exc
        try:
            return Cipher(algorithm, modes.CBC(iv))
        except ValueError as exc:
            raise CryptoError.from_key_iv_length(exc) from exc

    def encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        padder = padding.PKCS7(128).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = self._cipher(key, iv).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        decryptor = self._cipher(key, iv).decryptor()
        unpadder = padding.PKCS7(128).unpadder()
        try:
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise CryptoError.from_block_mode(exc) from exc


class ChaCha20Cipher(OuterCipher):
    """ChaCha20 (RFC 8439) without authentication; integrity comes from the block HMACs."""

    cipher_id = CIPHER_CHACHA20
    name = "ChaCha20"
    iv_size = 12

    def encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        encryptor = _chacha20(key, iv).encryptor()
        return encryptor.update(plaintext) + encryptor.finalize()

    def decrypt(self, key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        decryptor = _chacha20(key, iv).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()


CIPHER_REGISTRY: dict[bytes, type[OuterCipher]] = {
    CIPHER_AES256: AES256CBC,
    CIPHER_CHACHA20: ChaCha20Cipher,
}


def outer_cipher(cipher_id: bytes) -> OuterCipher:
    cipher_cls = CIPHER_REGISTRY.get(cipher_id)
    if cipher_cls is None:
        raise DatabaseIntegrityError(InvalidOuterCipherID(cipher_id))
    return cipher_cls()


class InnerStream:
    """Keystream that unmasks protected values in document order.

    Stream ID 0 leaves values untouched. ChaCha20 takes its key and nonce
    from SHA-512 of the inner stream key.
    """

    def __init__(self, stream_id: int, key: bytes):
        if stream_id == INNER_STREAM_NONE:
            self._xor = None
        elif stream_id == INNER_STREAM_CHACHA20:
            digest = hashlib.sha512(key).digest()
            self._xor = _chacha20(digest[:32], digest[32:44]).encryptor()
        else:
            raise DatabaseIntegrityError(InvalidInnerCipherID(stream_id))
        self.stream_id = stream_id

    def apply(self, data: bytes) -> bytes:
        if self._xor is None:
            return data
        return self._xor.update(data)
