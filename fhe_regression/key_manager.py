"""
Context and Key Management
==========================
Builds the CKKS context, derives key pairs and evaluation keys, and moves
them to and from persisted artifacts.

Key Distribution Model:
1. The key owner generates context, key pair and evaluation keys
2. Encryption-side artifacts (context, public key, multiplication and
   rotation keys) go to clients and the evaluator
3. The secret key is exported separately and stays with the key owner
4. Clients encrypt, the evaluator computes, only the key owner decrypts

Every generation function returns an explicit value bundle; nothing is
accumulated in shared context state.
"""

import hashlib
import json
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import tenseal.sealapi as sealapi

from .artifacts import (
    ArtifactRole,
    EvaluationKeySet,
    KeyPair,
    MultiplicationKey,
    PublicKey,
    RotationKeys,
    SecretKey,
)
from .codec import ArtifactCodec, Destination
from .constants import (
    CONTEXT_FILE,
    MULT_KEY_FILE,
    PUBLIC_KEY_FILE,
    ROTATION_KEY_FILE,
)
from .context import Capability, Context
from .exceptions import KeyGenerationFailure, SerializationError
from .inference_engine import rotation_steps
from .parameters import SchemeParameters
from .security_logger import DataType, KEY_OWNER, OperationType, SecurityLogger

METADATA_FILE = "key_metadata.json"

# Encryption-side artifacts in the order they are written
PUBLIC_BUNDLE: List[Tuple[ArtifactRole, str]] = [
    (ArtifactRole.CONTEXT, CONTEXT_FILE),
    (ArtifactRole.PUBLIC_KEY, PUBLIC_KEY_FILE),
    (ArtifactRole.MULTIPLICATION_KEY, MULT_KEY_FILE),
    (ArtifactRole.ROTATION_KEYS, ROTATION_KEY_FILE),
]


@dataclass
class KeyMetadata:
    """Human-readable description of an exported artifact set"""
    context_id: str
    created_at: str
    params: Dict[str, int]
    rotation_steps: List[int]
    fingerprints: Dict[str, str] = field(default_factory=dict)
    security_level: str = "128-bit"


@dataclass
class GenerationResult:
    """Everything one generation run produced"""
    context: Context
    key_pair: KeyPair
    evaluation_keys: EvaluationKeySet
    paths: Dict[ArtifactRole, Path]


class ContextKeyManager:
    """
    Generates, persists and restores contexts and keys.

    Args:
        passphrase: seals the secret key artifact at rest when given
        security_logger: optional audit trail
    """

    def __init__(self,
                 passphrase: Optional[str] = None,
                 security_logger: Optional[SecurityLogger] = None):
        self.codec = ArtifactCodec(passphrase)
        self.security_logger = security_logger

    def _audit(self, operation: OperationType, data_types: List[DataType], **details):
        if self.security_logger is not None:
            self.security_logger.log(KEY_OWNER, operation, data_types, details)

    # ==================== GENERATION ====================

    def generate_context(self, params: SchemeParameters) -> Context:
        """
        Build a context with PKE, KEYSWITCH, LEVELEDSHE and ADVANCEDSHE enabled.

        Raises:
            ContextGenerationError: if the parameters are infeasible
        """
        context = Context.create(params)
        self._audit(OperationType.GENERATE_CONTEXT, [DataType.PUBLIC_PARAM],
                    context_id=context.context_id, **params.to_dict())
        return context

    def generate_key_pair(self, context: Context) -> KeyPair:
        """
        Generate a fresh secret key and its public key.

        Raises:
            KeyGenerationFailure: if the substrate fails
        """
        try:
            keygen = sealapi.KeyGenerator(context.seal_context)
            secret_key = keygen.secret_key()
            public_key = sealapi.PublicKey()
            keygen.create_public_key(public_key)
        except (RuntimeError, ValueError) as exc:
            raise KeyGenerationFailure(f"Key pair generation failed: {exc}") from exc

        self._audit(OperationType.GENERATE_KEYS, [DataType.KEY_MATERIAL, DataType.SECRET_KEY],
                    kind='key_pair', context_id=context.context_id)
        return KeyPair(
            public_key=PublicKey(public_key, context.context_id),
            secret_key=SecretKey(secret_key, context.context_id)
        )

    def _keygen_for(self, context: Context, secret_key: SecretKey):
        context.check_binding(secret_key, "secret key")
        return sealapi.KeyGenerator(context.seal_context, secret_key.data)

    def generate_multiplication_key(self,
                                    context: Context,
                                    secret_key: SecretKey) -> MultiplicationKey:
        """
        Derive relinearization keys from ``secret_key``.

        Raises:
            KeyGenerationFailure: if the substrate fails
        """
        context.require(Capability.KEYSWITCH)
        try:
            keygen = self._keygen_for(context, secret_key)
            relin_keys = sealapi.RelinKeys()
            keygen.create_relin_keys(relin_keys)
        except (RuntimeError, ValueError) as exc:
            raise KeyGenerationFailure(f"Multiplication key generation failed: {exc}") from exc

        self._audit(OperationType.GENERATE_KEYS, [DataType.KEY_MATERIAL, DataType.SECRET_KEY],
                    kind='multiplication', context_id=context.context_id)
        return MultiplicationKey(relin_keys, context.context_id)

    def generate_rotation_keys(self,
                               context: Context,
                               secret_key: SecretKey,
                               indices: Iterable[int]) -> RotationKeys:
        """
        Derive rotation keys for exactly the given rotation amounts.

        Args:
            indices: non-zero rotation steps, positive = left, |step| < slot count

        Raises:
            KeyGenerationFailure: on an invalid index or substrate failure
        """
        context.require(Capability.KEYSWITCH)
        steps = sorted(set(indices))
        if not steps:
            raise KeyGenerationFailure("At least one rotation index is required")
        for step in steps:
            if isinstance(step, bool) or not isinstance(step, int):
                raise KeyGenerationFailure(f"Rotation index {step!r} is not an integer")
            if step == 0 or abs(step) >= context.slot_count:
                raise KeyGenerationFailure(
                    f"Rotation index {step} outside (0, {context.slot_count}) in magnitude")

        try:
            keygen = self._keygen_for(context, secret_key)
            galois_keys = sealapi.GaloisKeys()
            # the list overload takes Galois elements, not rotation steps
            keygen.create_galois_keys(context.galois_elements(steps), galois_keys)
        except (RuntimeError, ValueError) as exc:
            raise KeyGenerationFailure(f"Rotation key generation failed: {exc}") from exc

        self._audit(OperationType.GENERATE_KEYS, [DataType.KEY_MATERIAL, DataType.SECRET_KEY],
                    kind='rotation', steps=steps, context_id=context.context_id)
        return RotationKeys(galois_keys, frozenset(steps), context.context_id)

    def generate_evaluation_keys(self,
                                 context: Context,
                                 secret_key: SecretKey,
                                 feature_count: int) -> EvaluationKeySet:
        """Multiplication key plus the rotation keys a ``feature_count`` sum needs"""
        return EvaluationKeySet(
            multiplication_key=self.generate_multiplication_key(context, secret_key),
            rotation_keys=self.generate_rotation_keys(
                context, secret_key, rotation_steps(feature_count))
        )

    # ==================== PERSISTENCE ====================

    def persist(self, artifact, role: ArtifactRole, destination: Destination):
        """Serialize one artifact to a path or binary stream"""
        self.codec.persist(artifact, role, destination)
        data_types = [DataType.SECRET_KEY] if role is ArtifactRole.SECRET_KEY else [DataType.KEY_MATERIAL]
        self._audit(OperationType.PERSIST, data_types, role=role.value)

    def load(self, source: Destination, role: ArtifactRole, context: Optional[Context] = None):
        """
        Inverse of ``persist``.

        Raises:
            DeserializationError: truncated/corrupt stream, version or role
                mismatch, or an artifact bound to another context
        """
        return self.codec.load(source, role, context)

    def export_public_bundle(self,
                             directory,
                             context: Context,
                             public_key: PublicKey,
                             evaluation_keys: EvaluationKeySet) -> Dict[ArtifactRole, Path]:
        """
        Write the encryption-side artifacts into ``directory``.

        Files are written in order (context, public key, multiplication key,
        rotation keys). A failure part-way leaves the earlier files in place;
        the raised SerializationError names them.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        artifacts = {
            ArtifactRole.CONTEXT: context,
            ArtifactRole.PUBLIC_KEY: public_key,
            ArtifactRole.MULTIPLICATION_KEY: evaluation_keys.multiplication_key,
            ArtifactRole.ROTATION_KEYS: evaluation_keys.rotation_keys,
        }

        written: Dict[ArtifactRole, Path] = {}
        for role, filename in PUBLIC_BUNDLE:
            path = directory / filename
            try:
                self.persist(artifacts[role], role, path)
            except SerializationError as exc:
                raise SerializationError(
                    f"{exc}; partial artifact set left in place: "
                    f"{[str(p) for p in written.values()]}") from exc
            written[role] = path

        self._write_metadata(directory, context, evaluation_keys.rotation_keys, written)
        return written

    def export_secret_key(self, path, context: Context, secret_key: SecretKey) -> Path:
        """Write the decryption-side artifact, separate from the public bundle"""
        context.check_binding(secret_key, "secret key")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.persist(secret_key, ArtifactRole.SECRET_KEY, path)
        return path

    def _write_metadata(self,
                        directory: Path,
                        context: Context,
                        rotation_keys: RotationKeys,
                        written: Dict[ArtifactRole, Path]):
        metadata = KeyMetadata(
            context_id=context.context_id,
            created_at=datetime.now().isoformat(),
            params=context.params.to_dict(),
            rotation_steps=sorted(rotation_keys.steps),
            fingerprints={
                role.value: hashlib.sha256(path.read_bytes()).hexdigest()[:16]
                for role, path in written.items()
            }
        )
        with open(directory / METADATA_FILE, 'w') as f:
            json.dump(asdict(metadata), f, indent=2)

    def load_public_bundle(self, directory) -> Tuple[Context, PublicKey, EvaluationKeySet]:
        """Load the encryption-side artifacts written by ``export_public_bundle``"""
        directory = Path(directory)
        context = self.load(directory / CONTEXT_FILE, ArtifactRole.CONTEXT)
        public_key = self.load(directory / PUBLIC_KEY_FILE, ArtifactRole.PUBLIC_KEY, context)
        evaluation_keys = EvaluationKeySet(
            multiplication_key=self.load(
                directory / MULT_KEY_FILE, ArtifactRole.MULTIPLICATION_KEY, context),
            rotation_keys=self.load(
                directory / ROTATION_KEY_FILE, ArtifactRole.ROTATION_KEYS, context)
        )
        self._audit(OperationType.LOAD, [DataType.KEY_MATERIAL, DataType.PUBLIC_PARAM],
                    directory=str(directory), context_id=context.context_id)
        return context, public_key, evaluation_keys

    def load_secret_key(self, path, context: Context) -> SecretKey:
        return self.load(path, ArtifactRole.SECRET_KEY, context)

    # ==================== FULL RUN ====================

    def generate_artifacts(self,
                           params: SchemeParameters,
                           public_dir,
                           secret_path,
                           feature_count: int) -> GenerationResult:
        """
        Complete generation run: context, keys, then every artifact on disk.

        Keys are derived in memory first; artifacts are then written in the
        order context, public key, multiplication key, rotation keys, secret
        key. There is no rollback of files already written.
        """
        context = self.generate_context(params)
        key_pair = self.generate_key_pair(context)
        evaluation_keys = self.generate_evaluation_keys(context, key_pair.secret_key, feature_count)

        paths = self.export_public_bundle(public_dir, context, key_pair.public_key, evaluation_keys)
        try:
            paths[ArtifactRole.SECRET_KEY] = self.export_secret_key(
                secret_path, context, key_pair.secret_key)
        except SerializationError as exc:
            raise SerializationError(
                f"{exc}; public artifacts left in place: "
                f"{[str(p) for p in paths.values()]}") from exc

        return GenerationResult(context, key_pair, evaluation_keys, paths)
