"""
Key Derivation Function implementations.

KDBX 4 names its KDF by UUID inside the KdfParameters VariantDictionary.
Supported: AES-KDF and Argon2 (d and id variants). Every KDF turns the
32-byte composite key into the 32-byte transformed key.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from argon2.exceptions import Argon2Error
from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret_raw
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import (
    CryptoError,
    DatabaseIntegrityError,
    InvalidKDFUUID,
    InvalidKDFVersion,
    MistypedKDFParam,
)
from .formats import VD_BYTES, VD_UINT32, VD_UINT64, VariantDictionary

KDF_AES = bytes.fromhex("c9d9f39a628a4460bf740d08c18a4fea")
KDF_ARGON2D = bytes.fromhex("ef636ddf8c29444b91f7a9a403e30a0c")
KDF_ARGON2ID = bytes.fromhex("9e298b1956db4773b23dfc3ec6f0a1e6")

ARGON2_VERSIONS = (0x10, 0x13)

# argon2-cffi passes costs as 32-bit unsigned ints; Argon2 allows at most 2**24 - 1 lanes
ARGON2_LIMITS = {"I": 2**32, "M": 2**32 * 1024, "P": 2**24}


class KDF(ABC):
    """Abstract base for key derivation functions."""

    @property
    @abstractmethod
    def uuid(self) -> bytes:
        """Identifier stored under ``$UUID`` in the KDF parameters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name."""

    @abstractmethod
    def derive(self, composite_key: bytes) -> bytes:
        """Transform the composite key. Raises CryptoError on primitive failure."""

    @abstractmethod
    def parameters(self) -> VariantDictionary:
        """Serializable parameters, ``$UUID`` included."""

    @classmethod
    @abstractmethod
    def from_parameters(cls, params: VariantDictionary) -> KDF:
        """Build an instance from header parameters. Raises DatabaseIntegrityError."""


class AesKDF(KDF):
    """AES-KDF: *rounds* AES-256-ECB encryptions under *seed*, then SHA-256."""

    uuid = KDF_AES
    name = "AES-KDF"

    def __init__(self, seed: bytes, rounds: int = 60000):
        self.seed = seed
        self.rounds = rounds

    def derive(self, composite_key: bytes) -> bytes:
        try:
            algorithm = algorithms.AES(self.seed)
        except ValueError as exc:
            raise CryptoError.from_key_length(exc) from exc
        encryptor = Cipher(algorithm, modes.ECB()).encryptor()
        block = composite_key
        for _ in range(self.rounds):
            block = encryptor.update(block)
        return hashlib.sha256(block).digest()

    def parameters(self) -> VariantDictionary:
        return VariantDictionary({
            "$UUID": (VD_BYTES, self.uuid),
            "R": (VD_UINT64, self.rounds),
            "S": (VD_BYTES, self.seed),
        })

    @classmethod
    def from_parameters(cls, params: VariantDictionary) -> AesKDF:
        return cls(seed=params.get_bytes("S"), rounds=params.get_uint64("R"))


class Argon2KDF(KDF):
    """
    Argon2d / Argon2id as used by KeePass.

    ``memory`` is in bytes (the KDBX convention); argon2-cffi takes KiB.
    """

    def __init__(self, salt: bytes, iterations: int = 2, memory: int = 64 * 1024 * 1024,
                 parallelism: int = 2, version: int = 0x13, variant: bytes = KDF_ARGON2ID):
        self.salt = salt
        self.iterations = iterations
        self.memory = memory
        self.parallelism = parallelism
        self.version = version
        self.variant = variant

    @property
    def uuid(self) -> bytes:
        return self.variant

    @property
    def name(self) -> str:
        return "Argon2id" if self.variant == KDF_ARGON2ID else "Argon2d"

    def derive(self, composite_key: bytes) -> bytes:
        argon2_type = Argon2Type.ID if self.variant == KDF_ARGON2ID else Argon2Type.D
        try:
            return hash_secret_raw(
                secret=composite_key,
                salt=self.salt,
                time_cost=self.iterations,
                memory_cost=self.memory // 1024,
                parallelism=self.parallelism,
                hash_len=32,
                type=argon2_type,
                version=self.version,
            )
        except Argon2Error as exc:
            raise CryptoError.from_argon2(exc) from exc

    def parameters(self) -> VariantDictionary:
        return VariantDictionary({
            "$UUID": (VD_BYTES, self.variant),
            "S": (VD_BYTES, self.salt),
            "P": (VD_UINT32, self.parallelism),
            "M": (VD_UINT64, self.memory),
            "I": (VD_UINT64, self.iterations),
            "V": (VD_UINT32, self.version),
        })

    @classmethod
    def from_parameters(cls, params: VariantDictionary) -> Argon2KDF:
        version = params.get_uint32("V")
        if version not in ARGON2_VERSIONS:
            raise DatabaseIntegrityError(InvalidKDFVersion(version))
        iterations = params.get_uint64("I")
        memory = params.get_uint64("M")
        parallelism = params.get_uint32("P")
        for key, value in (("I", iterations), ("M", memory), ("P", parallelism)):
            if value >= ARGON2_LIMITS[key]:
                raise DatabaseIntegrityError(MistypedKDFParam(key))
        return cls(
            salt=params.get_bytes("S"),
            iterations=iterations,
            memory=memory,
            parallelism=parallelism,
            version=version,
            variant=params.get_bytes("$UUID"),
        )


KDF_REGISTRY: dict[bytes, type[KDF]] = {
    KDF_AES: AesKDF,
    KDF_ARGON2D: Argon2KDF,
    KDF_ARGON2ID: Argon2KDF,
}


def kdf_from_parameters(params: VariantDictionary) -> KDF:
    """Resolve the KDF named by ``$UUID`` and build it from *params*."""
    uuid = params.get_bytes("$UUID")
    kdf_cls = KDF_REGISTRY.get(uuid)
    if kdf_cls is None:
        raise DatabaseIntegrityError(InvalidKDFUUID(uuid))
    return kdf_cls.from_parameters(params)
