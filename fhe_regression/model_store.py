"""
Model Parameter Store
=====================
Reads and writes the plaintext regression model owned by the evaluator.

Layout (little-endian, fixed, unversioned):

    int32 N | N x float64 weights | float64 bias
"""

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Tuple

import numpy as np

from .exceptions import ModelFormatError

_COUNT = struct.Struct("<i")
_FLOAT64 = np.dtype('<f8')


@dataclass(frozen=True)
class ModelParameters:
    """Linear regression model y = dot(weights, x) + bias"""
    weights: Tuple[float, ...]
    bias: float

    @classmethod
    def from_sequence(cls, weights: Sequence[float], bias: float) -> 'ModelParameters':
        return cls(tuple(float(w) for w in weights), float(bias))

    @property
    def feature_count(self) -> int:
        return len(self.weights)


def parse_model_parameters(blob: bytes) -> ModelParameters:
    """
    Decode the weights file layout.

    Raises:
        ModelFormatError: negative count, short or trailing bytes, non-finite values
    """
    if len(blob) < _COUNT.size:
        raise ModelFormatError(f"Weights file truncated: {len(blob)} bytes, no count header")

    (count,) = _COUNT.unpack_from(blob)
    if count < 0:
        raise ModelFormatError(f"Weights file declares negative feature count {count}")

    expected = _COUNT.size + (count + 1) * _FLOAT64.itemsize
    if len(blob) < expected:
        raise ModelFormatError(
            f"Weights file truncated: {len(blob)} of {expected} bytes for {count} weights")
    if len(blob) > expected:
        raise ModelFormatError(
            f"Weights file has {len(blob) - expected} trailing bytes after the bias")

    values = np.frombuffer(blob, dtype=_FLOAT64, count=count + 1, offset=_COUNT.size)
    if not np.all(np.isfinite(values)):
        raise ModelFormatError("Weights file contains non-finite values")

    return ModelParameters.from_sequence(values[:count].tolist(), values[count])


def load_model_parameters(path) -> ModelParameters:
    with open(path, 'rb') as f:
        return parse_model_parameters(f.read())


def save_model_parameters(path, model: ModelParameters) -> Path:
    """Write ``model`` in the weights file layout; returns the path written"""
    values = np.asarray(list(model.weights) + [model.bias], dtype=_FLOAT64)
    if not np.all(np.isfinite(values)):
        raise ModelFormatError("Refusing to save non-finite model parameters")

    path = Path(path)
    with open(path, 'wb') as f:
        f.write(_COUNT.pack(model.feature_count))
        f.write(values.tobytes())
    return path
