"""Test configuration and shared fixtures."""

import pytest

from oracle.config import OracleConfig
from oracle.storage.keyed_store import KeyedStore
from tests.factories import DIM, FakeBackend


@pytest.fixture
def store(tmp_path):
    s = KeyedStore(tmp_path / "oracle.sqlite3")
    yield s
    s.close()


@pytest.fixture
def cfg(tmp_path):
    return OracleConfig(
        DATA_DIR=str(tmp_path / "data"),
        EMBEDDING_BACKEND="none",
        ANN_BACKEND="numpy",
        EMBED_DIM=DIM,
        WORKER_MODE="thread",
        WORKER_IDLE_TIMEOUT_S=30.0,
        LOG_COMPUTE_RUNS=False,
        BANDIT_SEED=7,
    )


@pytest.fixture
def backend():
    return FakeBackend()
