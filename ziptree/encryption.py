from __future__ import annotations

import hashlib
import hmac
import os
import struct
from dataclasses import dataclass

from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash
from Cryptodome.Cipher import ChaCha20_Poly1305

from .constants import (
    ARGON_TIME_COST,
    ARGON_MEMORY_COST_KIB,
    ARGON_PARALLELISM,
    ARGON_MAX_TIME_COST,
    ARGON_MAX_MEMORY_COST_KIB,
    ARGON_MAX_PARALLELISM,
)
from .errors import CorruptArchiveError, CorruptEntryError


NONCE_SIZE = 24  # XChaCha20-Poly1305
TAG_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16
VERIFIER_SIZE = 8


@dataclass(frozen=True)
class KdfCost:
    time_cost: int = ARGON_TIME_COST
    memory_cost_kib: int = ARGON_MEMORY_COST_KIB
    parallelism: int = ARGON_PARALLELISM


@dataclass
class EncryptionParams:
    salt: bytes
    time_cost: int
    memory_cost_kib: int
    parallelism: int

    @classmethod
    def generate(cls, cost: KdfCost | None = None) -> "EncryptionParams":
        cost = cost or KdfCost()
        return cls(
            salt=os.urandom(SALT_SIZE),
            time_cost=cost.time_cost,
            memory_cost_kib=cost.memory_cost_kib,
            parallelism=cost.parallelism,
        )

    def check_bounds(self) -> None:
        if len(self.salt) != SALT_SIZE:
            raise CorruptArchiveError("Bad key derivation salt length")
        if not (1 <= self.time_cost <= ARGON_MAX_TIME_COST):
            raise CorruptArchiveError("Unsupported Argon2 time cost in archive")
        if not (8 * self.parallelism <= self.memory_cost_kib <= ARGON_MAX_MEMORY_COST_KIB):
            raise CorruptArchiveError("Unsupported Argon2 memory cost in archive")
        if not (1 <= self.parallelism <= ARGON_MAX_PARALLELISM):
            raise CorruptArchiveError("Unsupported Argon2 parallelism in archive")


class EncryptionContext:
    """Archive master key derived from a password with Argon2id.

    One context serves every entry sealed with the same password; each entry
    gets its own key from a random per-entry salt.
    """

    def __init__(self, key: bytes, params: EncryptionParams):
        self.key = key
        self.params = params

    @classmethod
    def from_params(cls, password: str, params: EncryptionParams) -> "EncryptionContext":
        params.check_bounds()
        key = _argon_hash(
            password.encode("utf-8"),
            params.salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost_kib,
            parallelism=params.parallelism,
            hash_len=KEY_SIZE,
            type=_ArgonType.ID,
        )
        return cls(key, params)

    def entry_cipher(self, entry_salt: bytes) -> "EntryCipher":
        key = hmac.new(self.key, b"ZIPTREE_ENTRY_KEY" + entry_salt, hashlib.sha256).digest()
        return EntryCipher(key)


class EntryCipher:
    """Seals and opens the frames of a single entry."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError("Entry key must be 32 bytes")
        self._key = key
        self.verifier = hmac.new(key, b"ZIPTREE_VERIFY", hashlib.sha256).digest()[:VERIFIER_SIZE]

    def _derive_nonce(self, index: int) -> bytes:
        material = b"ZIPTREE_FRAME_NONCE" + struct.pack("<Q", index)
        return hmac.new(self._key, material, hashlib.sha512).digest()[:NONCE_SIZE]

    def encrypt(self, index: int, aad: bytes, plaintext: bytes) -> bytes:
        cipher = ChaCha20_Poly1305.new(key=self._key, nonce=self._derive_nonce(index))
        cipher.update(aad)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return ciphertext + tag

    def decrypt(self, index: int, aad: bytes, payload: bytes) -> bytes:
        if len(payload) < TAG_SIZE:
            raise CorruptEntryError("Encrypted frame too short")
        cipher = ChaCha20_Poly1305.new(key=self._key, nonce=self._derive_nonce(index))
        cipher.update(aad)
        try:
            return cipher.decrypt_and_verify(payload[:-TAG_SIZE], payload[-TAG_SIZE:])
        except ValueError:
            raise CorruptEntryError(f"Frame {index} failed authentication")
