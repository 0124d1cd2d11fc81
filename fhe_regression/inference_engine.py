"""
Encrypted Inference Engine
==========================
Evaluates a linear regression y = dot(W, X) + b on a CKKS-encrypted feature
vector without decrypting anything.

Pipeline (one multiplicative level in total):
1. multiply_plain by the packed weights, then rescale   level L -> L+1
2. rotate-and-sum by 1, 2, 4, ... so slot 0 holds sum(W * X)   no level
3. add the bias, encoded at the sum's level and scale       no level

The decrypted prediction is slot 0 of the output ciphertext.

Security Model:
- The engine only sees ciphertexts, its own model and evaluation keys
- It owns no public or secret key and never encrypts or decrypts
"""

from typing import List, Optional, Sequence

import tenseal.sealapi as sealapi

from .artifacts import EncodedVector, EncryptedVector, EvaluationKeySet
from .constants import REQUIRED_LEVELS
from .context import Capability, Context
from .exceptions import DepthExhausted, MissingEvaluationKey, ShapeMismatch
from .model_store import ModelParameters
from .security_logger import DataType, EVALUATOR, OperationType, SecurityLogger


def rotation_steps(length: int) -> List[int]:
    """
    Rotation amounts needed to fold ``length`` slots into slot 0.

    Powers of two from 1 up to and including the smallest power of two
    >= ``length``: 1 -> [1], 3 -> [1, 2, 4], 4 -> [1, 2, 4].
    """
    if length < 1:
        raise ShapeMismatch(f"Cannot sum a vector of length {length}")
    steps = [1]
    while steps[-1] < length:
        steps.append(steps[-1] * 2)
    return steps


class EncryptedInferenceEngine:
    """
    Homomorphic regression evaluator.

    Built from already-loaded objects; reading artifacts from disk is the
    caller's job (see ``ContextKeyManager.load_public_bundle``).

    Args:
        context: scheme context every input must be bound to
        evaluation_keys: rotation keys for ``rotation_steps(feature_count)``
        security_logger: optional audit trail
    """

    def __init__(self,
                 context: Context,
                 evaluation_keys: EvaluationKeySet,
                 security_logger: Optional[SecurityLogger] = None):
        context.require(Capability.LEVELEDSHE, Capability.KEYSWITCH)
        context.check_binding(evaluation_keys.rotation_keys, "rotation keys")
        if evaluation_keys.multiplication_key is not None:
            context.check_binding(evaluation_keys.multiplication_key, "multiplication key")

        self.context = context
        self.evaluation_keys = evaluation_keys
        self.security_logger = security_logger
        self._operation_count = 0

    def _audit(self, operation: OperationType, data_types: List[DataType], **details):
        self._operation_count += 1
        if self.security_logger is not None:
            self.security_logger.log(EVALUATOR, operation, data_types, details)

    # ==================== ENCODING ====================

    def encode_weights(self, weights: Sequence[float], target_level: int) -> EncodedVector:
        """
        Pack ``weights`` into a plaintext at ``target_level``.

        Slots past ``len(weights)`` are zero. A plaintext that encodes to all
        zeros gets 1.0 in the last slot, which lies outside every summation
        window, so that multiplying by it still yields a proper ciphertext.

        Raises:
            ShapeMismatch: more weights than the batch size
            DepthExhausted: ``target_level`` is outside the chain or leaves
                fewer than REQUIRED_LEVELS rescales
        """
        context = self.context
        if len(weights) > context.params.batch_size:
            raise ShapeMismatch(
                f"{len(weights)} weights exceed the batch size {context.params.batch_size}")
        if target_level < 0 or target_level > context.max_level:
            raise DepthExhausted(
                f"Level {target_level} is outside the modulus chain [0, {context.max_level}]")
        remaining = context.max_level - target_level
        if remaining < REQUIRED_LEVELS:
            raise DepthExhausted(
                f"Level {target_level} leaves {remaining} level(s); "
                f"evaluation needs {REQUIRED_LEVELS}")

        scale = context.params.scale
        values = [float(w) for w in weights] + [0.0] * (context.slot_count - len(weights))
        plain = sealapi.Plaintext()
        context.encoder.encode(values, scale, plain)
        if plain.is_zero():
            values[-1] = 1.0
            plain = sealapi.Plaintext()
            context.encoder.encode(values, scale, plain)

        for _ in range(target_level):
            context.evaluator.mod_switch_to_next_inplace(plain)

        self._audit(OperationType.ENCODE, [DataType.MODEL_PARAM, DataType.PUBLIC_PARAM],
                    what='weights', size=len(weights), level=target_level)
        return EncodedVector(plain, len(weights), target_level, scale)

    def encode_bias(self, bias: float, level: int, scale: float) -> EncodedVector:
        """Broadcast ``bias`` to every slot at the given level and scale"""
        context = self.context
        if level < 0 or level > context.max_level:
            raise DepthExhausted(
                f"Level {level} is outside the modulus chain [0, {context.max_level}]")

        plain = sealapi.Plaintext()
        context.encoder.encode([float(bias)] * context.slot_count, scale, plain)
        for _ in range(level):
            context.evaluator.mod_switch_to_next_inplace(plain)

        self._audit(OperationType.ENCODE, [DataType.MODEL_PARAM, DataType.PUBLIC_PARAM],
                    what='bias', level=level)
        return EncodedVector(plain, context.slot_count, level, scale)

    # ==================== REDUCTION ====================

    def _check_rotation_keys(self, length: int) -> List[int]:
        steps = rotation_steps(length)
        rotation_keys = self.evaluation_keys.rotation_keys
        missing = [s for s in steps if not rotation_keys.has_step(s, self.context)]
        if missing:
            raise MissingEvaluationKey(missing)
        return steps

    def _check_window(self, length: int):
        # slot_count - 1 carries the zero-weight mask and must stay outside the fold
        window = 2 * rotation_steps(length)[-1]
        if window >= self.context.slot_count:
            raise ShapeMismatch(
                f"Summing {length} slots spans {window} slots; "
                f"at most {self.context.slot_count // 2} fit in {self.context.slot_count}")

    def sum_slots(self, ciphertext, length: int):
        """
        Fold the first ``length`` slots of a substrate ciphertext into slot 0.

        Each step rotates the accumulator left and adds it back; after the
        last step slot 0 holds the sum of the whole window. No level is
        consumed.

        Raises:
            MissingEvaluationKey: before any rotation, if a step has no key
        """
        steps = self._check_rotation_keys(length)
        galois_keys = self.evaluation_keys.rotation_keys.data
        evaluator = self.context.evaluator

        accumulator = ciphertext
        for step in steps:
            rotated = sealapi.Ciphertext()
            evaluator.rotate_vector(accumulator, step, galois_keys, rotated)
            summed = sealapi.Ciphertext()
            evaluator.add(accumulator, rotated, summed)
            accumulator = summed

        self._audit(OperationType.ROTATE_SUM, [DataType.CIPHERTEXT, DataType.KEY_MATERIAL],
                    length=length, steps=steps)
        return accumulator

    # ==================== EVALUATION ====================

    def evaluate(self,
                 encrypted_input: EncryptedVector,
                 weights: Sequence[float],
                 bias: float) -> EncryptedVector:
        """
        Compute Enc(dot(weights, x) + bias) from Enc(x).

        Every check runs before the first homomorphic operation.

        Raises:
            ContextMismatch: input bound to another context
            ShapeMismatch: weight count differs from the input size, or the
                input does not fit the slot ring
            DepthExhausted: the input has no level left to multiply
            MissingEvaluationKey: a required rotation key is absent
        """
        context = self.context
        context.check_binding(encrypted_input, "input ciphertext")

        size = encrypted_input.size
        if len(weights) != size:
            raise ShapeMismatch(
                f"Model has {len(weights)} weights but the input holds {size} features")
        if size > context.params.batch_size:
            raise ShapeMismatch(
                f"Input of {size} features exceeds the batch size {context.params.batch_size}")
        self._check_window(size)
        self._check_rotation_keys(size)

        input_level = context.level_of(encrypted_input.data)
        encoded_weights = self.encode_weights(weights, input_level)

        # 1. packed multiply, one rescale
        product = sealapi.Ciphertext()
        context.evaluator.multiply_plain(encrypted_input.data, encoded_weights.data, product)
        context.evaluator.rescale_to_next_inplace(product)
        self._audit(OperationType.MULTIPLY, [DataType.CIPHERTEXT, DataType.MODEL_PARAM],
                    input_level=input_level, output_level=context.level_of(product))

        # 2. fold into slot 0
        summed = self.sum_slots(product, size)

        # 3. bias at the sum's level and exact scale
        sum_level = context.level_of(summed)
        encoded_bias = self.encode_bias(bias, sum_level, summed.scale)
        result = sealapi.Ciphertext()
        context.evaluator.add_plain(summed, encoded_bias.data, result)
        self._audit(OperationType.ADD, [DataType.CIPHERTEXT, DataType.MODEL_PARAM],
                    level=sum_level)

        self._audit(OperationType.EVALUATE, [DataType.CIPHERTEXT],
                    features=size, input_level=input_level,
                    output_level=context.level_of(result))
        return EncryptedVector(result, 1, context.context_id)

    def predict(self, encrypted_input: EncryptedVector, model: ModelParameters) -> EncryptedVector:
        return self.evaluate(encrypted_input, model.weights, model.bias)

    def get_stats(self) -> dict:
        return {
            'operation_count': self._operation_count,
            'context_id': self.context.context_id,
            'max_level': self.context.max_level,
            'rotation_steps': sorted(self.evaluation_keys.rotation_keys.steps),
        }
