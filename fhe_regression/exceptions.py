"""
Error taxonomy for key generation, artifact handling and encrypted evaluation.

Generation, I/O and (de)serialization errors are fatal for a run; the
evaluation guards (shape, depth, missing keys) are raised before the
pipeline performs the offending homomorphic operation.
"""


class FHERegressionError(Exception):
    """Base class for every error raised by this package"""


class ContextGenerationError(FHERegressionError):
    """Scheme parameters are infeasible for the arithmetic substrate"""


class KeyGenerationFailure(FHERegressionError):
    """Key pair or evaluation key derivation failed"""


class SerializationError(FHERegressionError):
    """An artifact could not be written"""


class DeserializationError(FHERegressionError):
    """An artifact stream is truncated, corrupt, of the wrong role or version"""


class PassphraseUnavailable(FHERegressionError):
    """The passphrase that seals the secret key was requested but not supplied"""


class ModelFormatError(FHERegressionError):
    """The plaintext weights file does not match its fixed layout"""


class ContextMismatch(FHERegressionError):
    """Objects created under different contexts were combined"""


class ShapeMismatch(FHERegressionError, ValueError):
    """Weight vector and encrypted input disagree on the feature count"""


class DepthExhausted(FHERegressionError):
    """Not enough multiplicative levels remain for the pipeline"""


class MissingEvaluationKey(FHERegressionError, KeyError):
    """A rotation step needed by the sum reduction has no key"""

    def __init__(self, missing_steps):
        self.missing_steps = sorted(missing_steps)
        super().__init__(f"No rotation key for step(s) {self.missing_steps}")

    def __str__(self):
        # KeyError would otherwise repr() the message
        return self.args[0]
