"""
Key and Ciphertext Bundles
==========================
Value types returned by key generation and consumed by evaluation. Each
wraps the substrate object and records the context it is bound to, so that
mixing objects from different generation runs is detected instead of
producing garbage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, Optional


class ArtifactRole(Enum):
    """Role tag written into every persisted artifact"""
    CONTEXT = "context"
    PUBLIC_KEY = "public_key"
    SECRET_KEY = "secret_key"
    MULTIPLICATION_KEY = "multiplication_key"
    ROTATION_KEYS = "rotation_keys"
    INPUT_CIPHERTEXT = "input_ciphertext"
    OUTPUT_CIPHERTEXT = "output_ciphertext"

    @property
    def code(self) -> int:
        return list(ArtifactRole).index(self) + 1

    @classmethod
    def from_code(cls, code: int) -> 'ArtifactRole':
        roles = list(cls)
        if not 1 <= code <= len(roles):
            raise ValueError(f"Unknown artifact role code {code}")
        return roles[code - 1]


@dataclass(frozen=True)
class PublicKey:
    data: Any  # sealapi.PublicKey
    context_id: str


@dataclass(frozen=True)
class SecretKey:
    """Decryption-side key; never handed to the evaluating party"""
    data: Any  # sealapi.SecretKey
    context_id: str

    def __repr__(self) -> str:
        return f"SecretKey(context_id={self.context_id!r})"


@dataclass(frozen=True)
class KeyPair:
    public_key: PublicKey
    secret_key: SecretKey


@dataclass(frozen=True)
class MultiplicationKey:
    """Relinearization keys for ciphertext x ciphertext products"""
    data: Any  # sealapi.RelinKeys
    context_id: str


@dataclass(frozen=True)
class RotationKeys:
    """Galois keys covering exactly ``steps`` (left rotations when positive)"""
    data: Any  # sealapi.GaloisKeys
    steps: FrozenSet[int]
    context_id: str

    def has_step(self, step: int, context=None) -> bool:
        """
        True when ``step`` is recorded. Given the owning context, the Galois
        key for it must also be present in ``data``.
        """
        if step not in self.steps:
            return False
        if context is None:
            return True
        return self.data.has_key(context.galois_elements([step])[0])


@dataclass(frozen=True)
class EvaluationKeySet:
    multiplication_key: Optional[MultiplicationKey]
    rotation_keys: RotationKeys


@dataclass(frozen=True)
class EncodedVector:
    """Packed plaintext tagged with its level and scale"""
    data: Any  # sealapi.Plaintext
    size: int
    level: int
    scale: float


@dataclass(frozen=True)
class EncryptedVector:
    """
    Packed ciphertext with ``size`` meaningful leading slots.

    The remaining slots are zero padding from encoding; evaluation results
    carry their value in slot 0.
    """
    data: Any  # sealapi.Ciphertext
    size: int
    context_id: str
