"""
Scheme Context
==============
Immutable handle binding one SchemeParameters instance to the substrate's
key-less CKKS context. Every operation in this package receives the context
explicitly; it owns no key material.

The SEAL context is built straight from the encryption parameters, so no
key is generated until the key manager asks for one. Its serialized form is
the canonical parameter description; SEAL derives the same modulus chain
from it on every load.

Levels are counted upward from 0 (fresh ciphertext) to ``max_level``
(modulus chain exhausted). The substrate tracks the inverse quantity, the
chain index, so ``level = max_level - chain_index``.
"""

import json
import secrets
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional

import tenseal.sealapi as sealapi

from .exceptions import ContextGenerationError, ContextMismatch
from .parameters import SchemeParameters

SECURITY_LEVEL = 128


class Capability(Enum):
    """Feature sets a context is generated with"""
    PKE = "pke"                    # encrypt / decrypt
    KEYSWITCH = "keyswitch"        # relinearization and rotations
    LEVELEDSHE = "leveledshe"      # leveled add / multiply / rescale
    ADVANCEDSHE = "advancedshe"    # slot sums and other composite ops


ALL_CAPABILITIES: FrozenSet[Capability] = frozenset(Capability)


def _encryption_parameters(params: SchemeParameters):
    parms = sealapi.EncryptionParameters(sealapi.SCHEME_TYPE.CKKS)
    parms.set_poly_modulus_degree(params.ring_dim)
    parms.set_coeff_modulus(
        sealapi.CoeffModulus.Create(params.ring_dim, params.coeff_mod_bit_sizes))
    return parms


def _build_seal_context(params: SchemeParameters):
    seal_context = sealapi.SEALContext(
        _encryption_parameters(params), True, sealapi.SEC_LEVEL_TYPE.TC128)
    if not seal_context.parameters_set():
        raise ValueError(seal_context.parameter_error_message())
    return seal_context


class Context:
    """
    Configuration handle threaded through every key and ciphertext operation.

    Build with ``Context.create`` (fresh run) or ``Context.from_serialized``
    (artifact load); the constructor only wires an existing substrate context.
    """

    def __init__(self,
                 params: SchemeParameters,
                 seal_context,
                 context_id: str,
                 capabilities: Iterable[Capability] = ALL_CAPABILITIES):
        self._params = params
        self._context_id = context_id
        self._capabilities = frozenset(capabilities)

        # Underlying C++ objects
        self._seal_context = seal_context
        self._encoder = sealapi.CKKSEncoder(self._seal_context)
        self._evaluator = sealapi.Evaluator(self._seal_context)
        self._max_level = self._seal_context.first_context_data().chain_index()

    @classmethod
    def create(cls,
               params: SchemeParameters,
               capabilities: Iterable[Capability] = ALL_CAPABILITIES) -> 'Context':
        """
        Instantiate a new context for ``params``.

        Raises:
            ContextGenerationError: if the parameters are infeasible
        """
        params.validate()
        try:
            seal_context = _build_seal_context(params)
        except (ValueError, RuntimeError) as exc:
            raise ContextGenerationError(f"Substrate rejected parameters {params}: {exc}") from exc

        return cls(params, seal_context, secrets.token_hex(8), capabilities)

    @classmethod
    def from_serialized(cls,
                        data: bytes,
                        params: SchemeParameters,
                        context_id: str,
                        capabilities: Iterable[Capability] = ALL_CAPABILITIES) -> 'Context':
        """
        Rebuild a context from ``serialize()`` output plus its metadata.

        Raises:
            ValueError: the payload is unreadable or disagrees with ``params``
        """
        described = json.loads(data.decode('utf-8'))
        if described != cls._describe(params):
            raise ValueError(f"Serialized parameters {described} do not match {params}")
        return cls(params, _build_seal_context(params), context_id, capabilities)

    @staticmethod
    def _describe(params: SchemeParameters) -> dict:
        return {
            'scheme': 'ckks',
            'poly_modulus_degree': params.ring_dim,
            'coeff_mod_bit_sizes': params.coeff_mod_bit_sizes,
            'security_level': SECURITY_LEVEL,
        }

    def serialize(self) -> bytes:
        return json.dumps(self._describe(self._params), sort_keys=True).encode('utf-8')

    # ==================== PROPERTIES ====================

    @property
    def params(self) -> SchemeParameters:
        return self._params

    @property
    def context_id(self) -> str:
        return self._context_id

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return self._capabilities

    @property
    def seal_context(self):
        return self._seal_context

    @property
    def encoder(self):
        return self._encoder

    @property
    def evaluator(self):
        return self._evaluator

    @property
    def max_level(self) -> int:
        return self._max_level

    @property
    def slot_count(self) -> int:
        return self._params.slot_count

    # ==================== LEVEL ACCOUNTING ====================

    def level_of(self, seal_object) -> int:
        """Levels already consumed by a substrate ciphertext or plaintext"""
        return self._max_level - self.remaining_levels(seal_object)

    def remaining_levels(self, seal_object) -> int:
        """Rescales still available to a substrate ciphertext or plaintext"""
        context_data = self._seal_context.get_context_data(seal_object.parms_id())
        if context_data is None:
            raise ContextMismatch("Object parameters are not part of this context's modulus chain")
        return context_data.chain_index()

    # ==================== ROTATIONS ====================

    def galois_elements(self, steps: Iterable[int]) -> List[int]:
        """Galois elements SEAL uses to key left rotations by ``steps``"""
        galois_tool = self._seal_context.key_context_data().galois_tool()
        return list(galois_tool.get_elts_from_steps(list(steps)))

    # ==================== BINDING CHECKS ====================

    def supports(self, capability: Capability) -> bool:
        return capability in self._capabilities

    def require(self, *capabilities: Capability):
        missing = [c.value for c in capabilities if c not in self._capabilities]
        if missing:
            raise ContextMismatch(f"Context {self._context_id} lacks capabilities {missing}")

    def check_binding(self, obj, what: Optional[str] = None):
        """Fail if ``obj`` was produced under a different context"""
        other = getattr(obj, 'context_id', None)
        if other != self._context_id:
            label = what or type(obj).__name__
            raise ContextMismatch(
                f"{label} belongs to context {other}, not {self._context_id}")

    def __repr__(self) -> str:
        return (f"Context(id={self._context_id}, ring_dim={self._params.ring_dim}, "
                f"depth={self._params.multiplicative_depth})")
