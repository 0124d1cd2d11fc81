"""
Artifact Codec
==============
Binary (de)serialization boundary for contexts, keys and ciphertexts.

Every artifact is an envelope around the substrate's own wire format:

    magic "FHLR" | version u8 | role u8 | meta_len u32 | payload_len u64
    | metadata (UTF-8 JSON) | payload | SHA-256 of everything before it

The payload bytes are owned by SEAL and treated as opaque; the envelope adds
the role tag, the binding context id and role-specific metadata, and lets a
reader reject truncated, corrupt, foreign-version or wrong-role streams
before handing anything to the substrate.

The secret key payload can optionally be sealed at rest with a
passphrase-derived Fernet key.
"""

import base64
import binascii
import hashlib
import json
import os
import secrets
import struct
import tempfile
import uuid
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Tuple, Union

import tenseal.sealapi as sealapi
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .artifacts import (
    ArtifactRole,
    EncryptedVector,
    MultiplicationKey,
    PublicKey,
    RotationKeys,
    SecretKey,
)
from .constants import KDF_ITERATIONS, KDF_SALT_BYTES
from .context import Capability, Context
from .exceptions import DeserializationError, SerializationError
from .parameters import SchemeParameters

MAGIC = b"FHLR"
FORMAT_VERSION = 1
HEADER = struct.Struct("<4sBBIQ")
DIGEST_SIZE = hashlib.sha256().digest_size

Destination = Union[str, os.PathLike, BinaryIO]

_EXPECTED_TYPES = {
    ArtifactRole.CONTEXT: Context,
    ArtifactRole.PUBLIC_KEY: PublicKey,
    ArtifactRole.SECRET_KEY: SecretKey,
    ArtifactRole.MULTIPLICATION_KEY: MultiplicationKey,
    ArtifactRole.ROTATION_KEYS: RotationKeys,
    ArtifactRole.INPUT_CIPHERTEXT: EncryptedVector,
    ArtifactRole.OUTPUT_CIPHERTEXT: EncryptedVector,
}

_SEAL_FACTORIES = {
    ArtifactRole.PUBLIC_KEY: sealapi.PublicKey,
    ArtifactRole.SECRET_KEY: sealapi.SecretKey,
    ArtifactRole.MULTIPLICATION_KEY: sealapi.RelinKeys,
    ArtifactRole.ROTATION_KEYS: sealapi.GaloisKeys,
    ArtifactRole.INPUT_CIPHERTEXT: sealapi.Ciphertext,
    ArtifactRole.OUTPUT_CIPHERTEXT: sealapi.Ciphertext,
}


# ==================== SEAL OBJECT I/O ====================

def _seal_temp_path() -> str:
    """
    Temp file path for SEAL serialization, which only speaks to files.

    Uses /dev/shm on Linux (RAM-backed), the regular temp dir elsewhere.
    """
    shm_dir = "/dev/shm"
    if os.path.isdir(shm_dir) and os.access(shm_dir, os.W_OK):
        return os.path.join(shm_dir, f"seal_{uuid.uuid4().hex}.bin")
    return os.path.join(tempfile.gettempdir(), f"seal_{uuid.uuid4().hex}.bin")


def dump_seal_object(obj) -> bytes:
    fname = _seal_temp_path()
    try:
        obj.save(fname)
        with open(fname, "rb") as f:
            return f.read()
    finally:
        if os.path.exists(fname):
            os.unlink(fname)


def load_seal_object(factory, seal_context, data: bytes):
    fname = _seal_temp_path()
    try:
        with open(fname, "wb") as f:
            f.write(data)
        obj = factory()
        obj.load(seal_context, fname)
        return obj
    finally:
        if os.path.exists(fname):
            os.unlink(fname)


# ==================== SECRET KEY SEALING ====================

def _fernet_for(passphrase: str, salt: bytes) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode('utf-8'))))


# ==================== ENVELOPE ====================

def pack_envelope(role: ArtifactRole, metadata: Dict[str, Any], payload: bytes) -> bytes:
    meta_bytes = json.dumps(metadata, sort_keys=True).encode('utf-8')
    body = HEADER.pack(MAGIC, FORMAT_VERSION, role.code, len(meta_bytes), len(payload))
    body += meta_bytes + payload
    return body + hashlib.sha256(body).digest()


def unpack_envelope(blob: bytes, expected_role: ArtifactRole) -> Tuple[Dict[str, Any], bytes]:
    """
    Validate an envelope and split it into metadata and payload.

    Raises:
        DeserializationError: on any structural, integrity, version or role problem
    """
    if len(blob) < HEADER.size + DIGEST_SIZE:
        raise DeserializationError(
            f"Artifact truncated: {len(blob)} bytes is shorter than the envelope header")

    magic, version, role_code, meta_len, payload_len = HEADER.unpack_from(blob)
    if magic != MAGIC:
        raise DeserializationError("Not an artifact stream (bad magic)")
    if version != FORMAT_VERSION:
        raise DeserializationError(
            f"Artifact format version {version} is not supported (expected {FORMAT_VERSION})")

    expected_len = HEADER.size + meta_len + payload_len + DIGEST_SIZE
    if len(blob) < expected_len:
        raise DeserializationError(
            f"Artifact truncated: {len(blob)} of {expected_len} bytes present")
    if len(blob) > expected_len:
        raise DeserializationError(
            f"Artifact has {len(blob) - expected_len} unexpected trailing bytes")

    body, digest = blob[:-DIGEST_SIZE], blob[-DIGEST_SIZE:]
    if hashlib.sha256(body).digest() != digest:
        raise DeserializationError("Artifact integrity check failed (checksum mismatch)")

    try:
        role = ArtifactRole.from_code(role_code)
    except ValueError as exc:
        raise DeserializationError(str(exc)) from exc
    if role != expected_role:
        raise DeserializationError(
            f"Artifact role mismatch: stream holds '{role.value}', expected '{expected_role.value}'")

    meta_start = HEADER.size
    payload_start = meta_start + meta_len
    try:
        metadata = json.loads(blob[meta_start:payload_start].decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DeserializationError(f"Artifact metadata unreadable: {exc}") from exc

    return metadata, blob[payload_start:payload_start + payload_len]


# ==================== CODEC ====================

class ArtifactCodec:
    """
    Encodes typed artifacts to bytes and back.

    Round-trip contract: ``decode(encode(x, role), role, context)`` is
    functionally equivalent to ``x`` for every downstream operation. The
    byte layout of the payload is SEAL's and is not specified here.
    """

    def __init__(self, passphrase: Optional[str] = None):
        """
        Args:
            passphrase: seals/unseals the secret key payload when given
        """
        self._passphrase = passphrase

    # ---------- bytes ----------

    def encode(self, artifact, role: ArtifactRole) -> bytes:
        """
        Serialize one artifact under ``role``.

        Raises:
            SerializationError: wrong artifact type for the role, or substrate failure
        """
        expected = _EXPECTED_TYPES[role]
        if not isinstance(artifact, expected):
            raise SerializationError(
                f"Cannot persist {type(artifact).__name__} as '{role.value}' "
                f"(expected {expected.__name__})")

        try:
            if role is ArtifactRole.CONTEXT:
                metadata = {
                    'context_id': artifact.context_id,
                    'params': artifact.params.to_dict(),
                    'capabilities': sorted(c.value for c in artifact.capabilities),
                }
                payload = artifact.serialize()
            else:
                metadata = {'context_id': artifact.context_id}
                payload = dump_seal_object(artifact.data)
        except (RuntimeError, ValueError, OSError) as exc:
            raise SerializationError(f"Could not serialize {role.value}: {exc}") from exc

        if role is ArtifactRole.ROTATION_KEYS:
            metadata['steps'] = sorted(artifact.steps)
        elif role in (ArtifactRole.INPUT_CIPHERTEXT, ArtifactRole.OUTPUT_CIPHERTEXT):
            metadata['size'] = artifact.size
        elif role is ArtifactRole.SECRET_KEY and self._passphrase is not None:
            salt = secrets.token_bytes(KDF_SALT_BYTES)
            payload = _fernet_for(self._passphrase, salt).encrypt(payload)
            metadata['sealed'] = True
            metadata['salt'] = base64.b64encode(salt).decode('ascii')

        return pack_envelope(role, metadata, payload)

    def decode(self, blob: bytes, role: ArtifactRole, context: Optional[Context] = None):
        """
        Rebuild an artifact of ``role`` from bytes.

        Args:
            blob: bytes produced by ``encode``
            role: role the caller expects
            context: required for every role except CONTEXT

        Raises:
            DeserializationError: malformed stream, role/version mismatch,
                missing or foreign context, or substrate load failure
        """
        metadata, payload = unpack_envelope(blob, role)

        if role is ArtifactRole.CONTEXT:
            return self._decode_context(metadata, payload)

        if context is None:
            raise DeserializationError(f"A context is required to load '{role.value}'")

        owner = metadata.get('context_id')
        if owner != context.context_id:
            raise DeserializationError(
                f"'{role.value}' artifact belongs to context {owner}, not {context.context_id}")

        if role is ArtifactRole.SECRET_KEY and metadata.get('sealed'):
            payload = self._unseal(metadata, payload)

        try:
            data = load_seal_object(_SEAL_FACTORIES[role], context.seal_context, payload)
        except (RuntimeError, ValueError, OSError) as exc:
            raise DeserializationError(f"Substrate could not load '{role.value}': {exc}") from exc

        try:
            if role is ArtifactRole.PUBLIC_KEY:
                return PublicKey(data, owner)
            if role is ArtifactRole.SECRET_KEY:
                return SecretKey(data, owner)
            if role is ArtifactRole.MULTIPLICATION_KEY:
                return MultiplicationKey(data, owner)
            if role is ArtifactRole.ROTATION_KEYS:
                return RotationKeys(data, frozenset(int(s) for s in metadata['steps']), owner)
            return EncryptedVector(data, int(metadata['size']), owner)
        except (KeyError, TypeError, ValueError) as exc:
            raise DeserializationError(f"'{role.value}' metadata incomplete: {exc}") from exc

    def _decode_context(self, metadata: Dict[str, Any], payload: bytes) -> Context:
        try:
            params = SchemeParameters.from_dict(metadata['params'])
            capabilities = [Capability(c) for c in metadata['capabilities']]
            context_id = metadata['context_id']
        except (KeyError, TypeError, ValueError) as exc:
            raise DeserializationError(f"Context metadata incomplete: {exc}") from exc

        try:
            return Context.from_serialized(payload, params, context_id, capabilities)
        except (RuntimeError, ValueError) as exc:
            raise DeserializationError(f"Substrate could not load context: {exc}") from exc

    def _unseal(self, metadata: Dict[str, Any], payload: bytes) -> bytes:
        if self._passphrase is None:
            raise DeserializationError("Secret key is sealed; a passphrase is required")
        try:
            salt = base64.b64decode(metadata.get('salt', ''), validate=True)
        except (binascii.Error, TypeError, ValueError) as exc:
            raise DeserializationError(f"Sealed secret key has an unreadable salt: {exc}") from exc
        try:
            return _fernet_for(self._passphrase, salt).decrypt(payload)
        except InvalidToken as exc:
            raise DeserializationError("Secret key unsealing failed (wrong passphrase?)") from exc

    # ---------- streams / files ----------

    def persist(self, artifact, role: ArtifactRole, destination: Destination):
        """Write one artifact to a path or a writable binary stream"""
        blob = self.encode(artifact, role)
        try:
            if hasattr(destination, 'write'):
                destination.write(blob)
            else:
                with open(destination, 'wb') as f:
                    f.write(blob)
        except OSError as exc:
            raise SerializationError(f"Could not write {role.value} to {destination}: {exc}") from exc

    def load(self, source: Destination, role: ArtifactRole, context: Optional[Context] = None):
        """Read one artifact from a path or a readable binary stream"""
        try:
            if hasattr(source, 'read'):
                blob = source.read()
            else:
                blob = Path(source).read_bytes()
        except OSError as exc:
            raise DeserializationError(f"Could not read {role.value} from {source}: {exc}") from exc
        return self.decode(blob, role, context)
