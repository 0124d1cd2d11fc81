"""
Key Manager Tests
=================
Generation, bundle export/import and the partial-failure contract.
"""

import json

import pytest
import tenseal
import tenseal.sealapi as sealapi

from fhe_regression.artifacts import ArtifactRole, RotationKeys
from fhe_regression.client import decrypt_prediction, decrypt_vector, encrypt_features
from fhe_regression.constants import (
    CONTEXT_FILE,
    MULT_KEY_FILE,
    PUBLIC_KEY_FILE,
    ROTATION_KEY_FILE,
    SECRET_KEY_FILE,
)
from fhe_regression.context import ALL_CAPABILITIES, Context
from fhe_regression.exceptions import (
    ContextGenerationError,
    ContextMismatch,
    DeserializationError,
    KeyGenerationFailure,
    SerializationError,
)
from fhe_regression.inference_engine import EncryptedInferenceEngine
from fhe_regression.key_manager import METADATA_FILE, ContextKeyManager
from fhe_regression.parameters import SchemeParameters
from fhe_regression.security_logger import KEY_OWNER, SecurityLogger


class TestGeneration:

    def test_context_capabilities_and_levels(self, context, params):
        assert context.capabilities == ALL_CAPABILITIES
        assert context.max_level == params.multiplicative_depth
        assert context.slot_count == 4096

    def test_infeasible_context(self, manager):
        with pytest.raises(ContextGenerationError):
            manager.generate_context(SchemeParameters(
                multiplicative_depth=8, scaling_mod_size=40, batch_size=4096,
                ring_dim=8192, first_mod_size=60))

    def test_contexts_get_distinct_ids(self, context, other_context):
        assert context.context_id != other_context.context_id

    def test_key_pair_bound_to_context(self, context, key_pair):
        assert key_pair.public_key.context_id == context.context_id
        assert key_pair.secret_key.context_id == context.context_id

    def test_evaluation_keys_cover_reduction_steps(self, context, evaluation_keys):
        assert evaluation_keys.multiplication_key.context_id == context.context_id
        assert evaluation_keys.rotation_keys.steps == frozenset({1, 2, 4})

    def test_rotation_keys_for_exact_indices(self, manager, context, key_pair):
        keys = manager.generate_rotation_keys(context, key_pair.secret_key, [3, -1, 3])
        assert keys.steps == frozenset({-1, 3})
        assert keys.has_step(3)
        assert not keys.has_step(1)

    def test_rotation_keys_hold_a_galois_key_per_step(self, context, evaluation_keys):
        keys = evaluation_keys.rotation_keys
        for element in context.galois_elements(sorted(keys.steps)):
            assert keys.data.has_key(element)

    def test_rotation_by_one_is_not_the_identity_key(self, manager, context, key_pair):
        keys = manager.generate_rotation_keys(context, key_pair.secret_key, [1])
        [element] = context.galois_elements([1])

        assert element != 1
        assert keys.data.has_key(element)
        assert not keys.data.has_key(1)

    def test_recorded_step_needs_key_material(self, manager, context, key_pair):
        only_one = manager.generate_rotation_keys(context, key_pair.secret_key, [1])
        mislabelled = RotationKeys(only_one.data, frozenset({1, 2}), context.context_id)

        assert mislabelled.has_step(2)
        assert mislabelled.has_step(1, context)
        assert not mislabelled.has_step(2, context)

    def test_context_creation_generates_no_keys(self, params, monkeypatch):
        def generates_keys(*args, **kwargs):
            raise AssertionError("context creation must not generate keys")

        monkeypatch.setattr(tenseal, "context", generates_keys)
        monkeypatch.setattr(sealapi, "KeyGenerator", generates_keys)
        context = Context.create(params)

        assert context.max_level == params.multiplicative_depth
        assert context.seal_context.parameters_set()

    @pytest.mark.parametrize("indices", [[], [0], [4096], [-4096], [1.5], [True]])
    def test_invalid_rotation_indices(self, manager, context, key_pair, indices):
        with pytest.raises(KeyGenerationFailure):
            manager.generate_rotation_keys(context, key_pair.secret_key, indices)

    def test_secret_key_from_other_context(self, manager, key_pair, other_context):
        with pytest.raises(ContextMismatch):
            manager.generate_multiplication_key(other_context, key_pair.secret_key)

    def test_generation_is_audited(self, params):
        logger = SecurityLogger()
        manager = ContextKeyManager(security_logger=logger)
        context = manager.generate_context(params)
        manager.generate_key_pair(context)

        assert logger.get_operations(KEY_OWNER) == ['generate_context', 'generate_keys']
        assert logger.verify_no_violations()


class TestBundles:

    @pytest.fixture
    def exported(self, manager, context, key_pair, evaluation_keys, tmp_path):
        public_dir = tmp_path / "public"
        paths = manager.export_public_bundle(
            public_dir, context, key_pair.public_key, evaluation_keys)
        secret_path = manager.export_secret_key(
            tmp_path / "private" / SECRET_KEY_FILE, context, key_pair.secret_key)
        return public_dir, secret_path, paths

    def test_public_bundle_layout(self, exported):
        public_dir, secret_path, paths = exported

        assert list(paths) == [
            ArtifactRole.CONTEXT,
            ArtifactRole.PUBLIC_KEY,
            ArtifactRole.MULTIPLICATION_KEY,
            ArtifactRole.ROTATION_KEYS,
        ]
        for name in (CONTEXT_FILE, PUBLIC_KEY_FILE, MULT_KEY_FILE, ROTATION_KEY_FILE):
            assert (public_dir / name).is_file()
        # decryption-side artifact lives apart from the public bundle
        assert not (public_dir / SECRET_KEY_FILE).exists()
        assert secret_path.is_file()

    def test_metadata_file(self, exported, context):
        public_dir, _, _ = exported
        metadata = json.loads((public_dir / METADATA_FILE).read_text())

        assert metadata['context_id'] == context.context_id
        assert metadata['rotation_steps'] == [1, 2, 4]
        assert set(metadata['fingerprints']) == {
            'context', 'public_key', 'multiplication_key', 'rotation_keys'}

    def test_loaded_bundle_is_functional(self, manager, exported, key_pair):
        public_dir, secret_path, _ = exported
        context, public_key, evaluation_keys = manager.load_public_bundle(public_dir)
        secret_key = manager.load_secret_key(secret_path, context)

        encrypted = encrypt_features(context, public_key, [3.0, 4.0])
        assert abs(decrypt_vector(context, secret_key, encrypted)[1] - 4.0) < 1e-4

        engine = EncryptedInferenceEngine(context, evaluation_keys)
        result = engine.evaluate(encrypted, [1.0, 2.0], 5.0)
        assert abs(decrypt_prediction(context, secret_key, result) - 16.0) < 1e-2

    def test_bundle_from_another_run_rejected(self, manager, exported, other_context, tmp_path):
        public_dir, secret_path, _ = exported
        other_pair = manager.generate_key_pair(other_context)
        manager.persist(other_pair.public_key, ArtifactRole.PUBLIC_KEY, public_dir / PUBLIC_KEY_FILE)

        with pytest.raises(DeserializationError):
            manager.load_public_bundle(public_dir)

    def test_sealed_secret_key(self, context, key_pair, tmp_path):
        path = ContextKeyManager(passphrase="s3cret").export_secret_key(
            tmp_path / SECRET_KEY_FILE, context, key_pair.secret_key)

        assert ContextKeyManager(passphrase="s3cret").load_secret_key(path, context) is not None
        with pytest.raises(DeserializationError):
            ContextKeyManager().load_secret_key(path, context)


class TestGenerateArtifacts:

    def test_full_run_writes_every_artifact(self, params, tmp_path):
        result = ContextKeyManager().generate_artifacts(
            params, tmp_path / "keys", tmp_path / "owner" / SECRET_KEY_FILE, feature_count=3)

        assert set(result.paths) == {
            ArtifactRole.CONTEXT, ArtifactRole.PUBLIC_KEY, ArtifactRole.MULTIPLICATION_KEY,
            ArtifactRole.ROTATION_KEYS, ArtifactRole.SECRET_KEY}
        assert all(path.is_file() for path in result.paths.values())
        assert result.evaluation_keys.rotation_keys.steps == frozenset({1, 2, 4})

    def test_partial_failure_leaves_files_in_place(self, params, tmp_path):
        keys_dir = tmp_path / "keys"
        # a directory where the rotation key file should go makes that write fail
        (keys_dir / ROTATION_KEY_FILE).mkdir(parents=True)

        with pytest.raises(SerializationError) as excinfo:
            ContextKeyManager().generate_artifacts(
                params, keys_dir, tmp_path / SECRET_KEY_FILE, feature_count=2)

        assert CONTEXT_FILE in str(excinfo.value)
        assert MULT_KEY_FILE in str(excinfo.value)
        assert (keys_dir / CONTEXT_FILE).is_file()
        assert (keys_dir / PUBLIC_KEY_FILE).is_file()
        assert (keys_dir / MULT_KEY_FILE).is_file()
        assert not (tmp_path / SECRET_KEY_FILE).exists()
