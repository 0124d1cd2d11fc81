"""
Scheme Parameters
=================
Immutable description of the CKKS setup shared by every key and ciphertext
of one generation run.

Modulus chain layout:
- first prime: ``first_mod_size`` bits, holds the integer part at level 0
- one ``scaling_mod_size``-bit prime per multiplicative level
- a trailing ``first_mod_size``-bit special prime used for key switching
"""

from dataclasses import dataclass, asdict
from typing import List

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FIRST_MOD_SIZE,
    DEFAULT_MULTIPLICATIVE_DEPTH,
    DEFAULT_RING_DIM,
    DEFAULT_SCALING_MOD_SIZE,
    MAX_COEFF_MODULUS_BITS,
    MAX_MODULUS_BITS,
    MIN_SCALING_MOD_SIZE,
)
from .exceptions import ContextGenerationError


def _is_power_of_two(value: int) -> bool:
    return value > 0 and value & (value - 1) == 0


@dataclass(frozen=True)
class SchemeParameters:
    """CKKS parameters fixed at context-generation time"""
    multiplicative_depth: int = DEFAULT_MULTIPLICATIVE_DEPTH
    scaling_mod_size: int = DEFAULT_SCALING_MOD_SIZE
    batch_size: int = DEFAULT_BATCH_SIZE
    ring_dim: int = DEFAULT_RING_DIM
    first_mod_size: int = DEFAULT_FIRST_MOD_SIZE

    @property
    def coeff_mod_bit_sizes(self) -> List[int]:
        """Bit sizes of the full modulus chain, special prime included"""
        return ([self.first_mod_size]
                + [self.scaling_mod_size] * self.multiplicative_depth
                + [self.first_mod_size])

    @property
    def slot_count(self) -> int:
        return self.ring_dim // 2

    @property
    def scale(self) -> float:
        return float(2 ** self.scaling_mod_size)

    def validate(self):
        """
        Reject parameters the substrate cannot instantiate securely.

        Raises:
            ContextGenerationError: with the first violated constraint
        """
        if self.multiplicative_depth < 1:
            raise ContextGenerationError(
                f"Multiplicative depth must be at least 1, got {self.multiplicative_depth}")

        if self.ring_dim not in MAX_COEFF_MODULUS_BITS:
            raise ContextGenerationError(
                f"Unsupported ring dimension {self.ring_dim}; "
                f"expected one of {sorted(MAX_COEFF_MODULUS_BITS)}")

        if not _is_power_of_two(self.batch_size):
            raise ContextGenerationError(
                f"Batch size must be a power of two, got {self.batch_size}")

        if self.ring_dim < 2 * self.batch_size:
            raise ContextGenerationError(
                f"Ring dimension {self.ring_dim} too small for {self.batch_size} slots "
                f"(needs at least {2 * self.batch_size})")

        if not MIN_SCALING_MOD_SIZE <= self.scaling_mod_size <= MAX_MODULUS_BITS:
            raise ContextGenerationError(
                f"Scaling modulus size must be within "
                f"[{MIN_SCALING_MOD_SIZE}, {MAX_MODULUS_BITS}] bits, got {self.scaling_mod_size}")

        if not self.scaling_mod_size <= self.first_mod_size <= MAX_MODULUS_BITS:
            raise ContextGenerationError(
                f"First modulus size must be within "
                f"[{self.scaling_mod_size}, {MAX_MODULUS_BITS}] bits, got {self.first_mod_size}")

        total_bits = sum(self.coeff_mod_bit_sizes)
        bound = MAX_COEFF_MODULUS_BITS[self.ring_dim]
        if total_bits > bound:
            raise ContextGenerationError(
                f"Modulus chain of {total_bits} bits exceeds the 128-bit security "
                f"bound of {bound} bits for ring dimension {self.ring_dim}")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'SchemeParameters':
        return cls(
            multiplicative_depth=int(data['multiplicative_depth']),
            scaling_mod_size=int(data['scaling_mod_size']),
            batch_size=int(data['batch_size']),
            ring_dim=int(data['ring_dim']),
            first_mod_size=int(data['first_mod_size'])
        )
