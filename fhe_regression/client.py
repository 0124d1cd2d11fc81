"""
Client-side helpers for the encrypting and decrypting party.

The client holds the public key (to encrypt features) and, when it is also
the key owner, the secret key (to read the prediction).
"""

from typing import List, Optional, Sequence

import numpy as np
import tenseal.sealapi as sealapi

from .artifacts import EncryptedVector, PublicKey, SecretKey
from .context import Capability, Context
from .exceptions import DepthExhausted, ShapeMismatch
from .security_logger import CLIENT, DataType, OperationType, SecurityLogger


def encrypt_features(context: Context,
                     public_key: PublicKey,
                     values: Sequence[float],
                     level: int = 0,
                     security_logger: Optional[SecurityLogger] = None) -> EncryptedVector:
    """
    Pack and encrypt a feature vector, zero-padded to the slot count.

    Args:
        level: levels to drop before encrypting; lets a caller hand the
            evaluator a ciphertext lower in the modulus chain
    """
    context.require(Capability.PKE)
    context.check_binding(public_key, "public key")
    if len(values) == 0:
        raise ShapeMismatch("Cannot encrypt an empty feature vector")
    if len(values) > context.params.batch_size:
        raise ShapeMismatch(
            f"{len(values)} features exceed the batch size {context.params.batch_size}")
    if level < 0 or level > context.max_level:
        raise DepthExhausted(f"Level {level} is outside the modulus chain [0, {context.max_level}]")

    padded = [float(v) for v in values] + [0.0] * (context.slot_count - len(values))
    plain = sealapi.Plaintext()
    context.encoder.encode(padded, context.params.scale, plain)
    for _ in range(level):
        context.evaluator.mod_switch_to_next_inplace(plain)

    encrypted = sealapi.Ciphertext()
    sealapi.Encryptor(context.seal_context, public_key.data).encrypt(plain, encrypted)

    if security_logger is not None:
        security_logger.log(CLIENT, OperationType.ENCRYPT,
                            [DataType.PLAINTEXT, DataType.KEY_MATERIAL],
                            {'features': len(values), 'level': level})
    return EncryptedVector(encrypted, len(values), context.context_id)


def decrypt_vector(context: Context,
                   secret_key: SecretKey,
                   encrypted: EncryptedVector,
                   security_logger: Optional[SecurityLogger] = None) -> List[float]:
    """Decrypt and decode the ``encrypted.size`` meaningful slots"""
    context.check_binding(secret_key, "secret key")
    context.check_binding(encrypted, "ciphertext")

    plain = sealapi.Plaintext()
    sealapi.Decryptor(context.seal_context, secret_key.data).decrypt(encrypted.data, plain)
    values = context.encoder.decode_double(plain)

    if security_logger is not None:
        security_logger.log(CLIENT, OperationType.DECRYPT,
                            [DataType.CIPHERTEXT, DataType.SECRET_KEY],
                            {'size': encrypted.size})
    return list(values[:encrypted.size])


def decrypt_prediction(context: Context,
                       secret_key: SecretKey,
                       encrypted: EncryptedVector,
                       security_logger: Optional[SecurityLogger] = None) -> float:
    """Regression output lives in slot 0"""
    return decrypt_vector(context, secret_key, encrypted, security_logger)[0]


def read_features(path) -> List[float]:
    """Read a plain-text feature file, one float per line"""
    values = np.atleast_1d(np.loadtxt(path, dtype=np.float64))
    if values.ndim != 1:
        raise ShapeMismatch(f"{path} does not hold one feature per line")
    return values.tolist()
