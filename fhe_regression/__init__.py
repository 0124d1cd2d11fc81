"""
FHE Regression - Encrypted Linear-Regression Inference
Powered by TenSEAL with the CKKS scheme for real-number slots
"""

from .artifacts import (
    ArtifactRole,
    EncodedVector,
    EncryptedVector,
    EvaluationKeySet,
    KeyPair,
    MultiplicationKey,
    PublicKey,
    RotationKeys,
    SecretKey,
)
from .codec import ArtifactCodec
from .context import Capability, Context
from .exceptions import (
    ContextGenerationError,
    ContextMismatch,
    DepthExhausted,
    DeserializationError,
    FHERegressionError,
    KeyGenerationFailure,
    MissingEvaluationKey,
    ModelFormatError,
    PassphraseUnavailable,
    SerializationError,
    ShapeMismatch,
)
from .inference_engine import EncryptedInferenceEngine, rotation_steps
from .key_manager import ContextKeyManager, GenerationResult
from .model_store import ModelParameters, load_model_parameters, save_model_parameters
from .parameters import SchemeParameters
from .security_logger import SecurityLogger

__all__ = [
    'ArtifactCodec', 'ArtifactRole', 'Capability', 'Context', 'ContextKeyManager',
    'EncodedVector', 'EncryptedInferenceEngine', 'EncryptedVector', 'EvaluationKeySet',
    'GenerationResult', 'KeyPair', 'ModelParameters', 'MultiplicationKey', 'PublicKey',
    'RotationKeys', 'SchemeParameters', 'SecretKey', 'SecurityLogger',
    'load_model_parameters', 'rotation_steps', 'save_model_parameters',
    'ContextGenerationError', 'ContextMismatch', 'DepthExhausted', 'DeserializationError',
    'FHERegressionError', 'KeyGenerationFailure', 'MissingEvaluationKey', 'ModelFormatError',
    'PassphraseUnavailable', 'SerializationError', 'ShapeMismatch',
]
__version__ = '1.0.0'
