"""
Client helpers: feature files, encryption and decryption.
"""

import pytest

from fhe_regression.client import decrypt_vector, encrypt_features, read_features
from fhe_regression.exceptions import ContextMismatch, DepthExhausted, ShapeMismatch


class TestReadFeatures:

    def test_one_value_per_line(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("1.5\n-2\n3.25\n")
        assert read_features(path) == [1.5, -2.0, 3.25]

    def test_single_value(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("42\n")
        assert read_features(path) == [42.0]

    def test_rejects_columns(self, tmp_path):
        path = tmp_path / "test.txt"
        path.write_text("1 2\n3 4\n")
        with pytest.raises(ShapeMismatch):
            read_features(path)


class TestEncryptDecrypt:

    def test_roundtrip(self, context, key_pair, encrypt):
        values = [1.5, 2.5, 3.5, 4.5, 5.5]
        encrypted = encrypt(values)
        decrypted = decrypt_vector(context, key_pair.secret_key, encrypted)

        assert encrypted.size == len(values)
        assert len(decrypted) == len(values)
        for o, d in zip(values, decrypted):
            assert abs(o - d) < 1e-4, f"Expected {o}, got {d}"

    def test_encrypt_at_lower_level(self, context, key_pair, encrypt):
        encrypted = encrypt([7.0], level=1)

        assert context.level_of(encrypted.data) == 1
        assert abs(decrypt_vector(context, key_pair.secret_key, encrypted)[0] - 7.0) < 1e-4

    def test_too_many_features(self, context, encrypt):
        with pytest.raises(ShapeMismatch):
            encrypt([1.0] * (context.params.batch_size + 1))

    def test_empty_features(self, encrypt):
        with pytest.raises(ShapeMismatch):
            encrypt([])

    def test_level_outside_chain(self, context, encrypt):
        with pytest.raises(DepthExhausted):
            encrypt([1.0], level=context.max_level + 1)

    def test_foreign_public_key(self, manager, context, other_context):
        other_pair = manager.generate_key_pair(other_context)
        with pytest.raises(ContextMismatch):
            encrypt_features(context, other_pair.public_key, [1.0])

    def test_foreign_secret_key(self, manager, other_context, encrypt):
        other_pair = manager.generate_key_pair(other_context)
        with pytest.raises(ContextMismatch):
            decrypt_vector(other_context, other_pair.secret_key, encrypt([1.0]))
