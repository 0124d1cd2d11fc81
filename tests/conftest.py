"""
Shared fixtures.

Context and key generation are the slow part of every test, so one small
context (ring 8192, two levels) and its keys are built once per session.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fhe_regression.client import encrypt_features
from fhe_regression.key_manager import ContextKeyManager
from fhe_regression.parameters import SchemeParameters

FEATURE_COUNT = 4


@pytest.fixture(scope="session")
def params():
    return SchemeParameters(
        multiplicative_depth=2,
        scaling_mod_size=40,
        batch_size=4096,
        ring_dim=8192,
        first_mod_size=60,
    )


@pytest.fixture(scope="session")
def manager():
    return ContextKeyManager()


@pytest.fixture(scope="session")
def context(manager, params):
    return manager.generate_context(params)


@pytest.fixture(scope="session")
def key_pair(manager, context):
    return manager.generate_key_pair(context)


@pytest.fixture(scope="session")
def evaluation_keys(manager, context, key_pair):
    return manager.generate_evaluation_keys(context, key_pair.secret_key, FEATURE_COUNT)


@pytest.fixture(scope="session")
def other_context(manager, params):
    """Independent context built from the same parameters"""
    return manager.generate_context(params)


@pytest.fixture
def encrypt(context, key_pair):
    def _encrypt(values, level=0):
        return encrypt_features(context, key_pair.public_key, values, level=level)
    return _encrypt
