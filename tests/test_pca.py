import numpy as np
import pytest

from oracle.compute.pca import NumpyPCA, normalize_positions, project_embeddings, validate_positions


class BrokenPCA:
    name = "broken"

    def project(self, vectors, components=3):
        raise RuntimeError("device lost")


class FlatPCA:
    name = "flat"

    def project(self, vectors, components=3):
        return np.zeros((len(vectors), components))


def _cloud(n=40, dim=16, seed=0):
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n, dim)) * np.linspace(3, 0.1, dim)


def test_numpy_pca_shape():
    out = NumpyPCA(rng=np.random.default_rng(1)).project(_cloud())
    assert out.shape == (40, 3)
    assert np.all(np.isfinite(out))


def test_normalize_positions_bounds():
    pos = normalize_positions(np.array([[0.0, 5.0, 1.0], [10.0, 5.0, 3.0], [5.0, 5.0, 2.0]]), spread=50)
    assert pos[:, 0].tolist() == [-50.0, 50.0, 0.0]
    assert pos[:, 1].tolist() == [0.0, 0.0, 0.0]
    assert np.abs(pos).max() <= 50


def test_validate_positions():
    assert validate_positions(np.array([[1.0, 2.0, 3.0]]))
    assert not validate_positions(np.zeros((0, 3)))
    assert not validate_positions(np.zeros((4, 3)))
    assert not validate_positions(np.array([[np.nan, 0, 0], [1, 0, 0]]))
    assert validate_positions(np.array([[0.0, 0, 0], [1, 0, 0]]))


def test_project_embeddings_in_range():
    pos = project_embeddings(_cloud(), spread=100, strategy=NumpyPCA(rng=np.random.default_rng(2)))
    assert pos.shape == (40, 3)
    assert np.abs(pos).max() <= 100 + 1e-9
    assert validate_positions(pos)


@pytest.mark.parametrize("strategy", [BrokenPCA(), FlatPCA()])
def test_failing_strategy_falls_back_to_cpu(strategy):
    pos = project_embeddings(_cloud(), strategy=strategy)
    assert pos.shape == (40, 3)
    assert validate_positions(pos)


def test_degenerate_input_raises():
    with pytest.raises(ValueError):
        project_embeddings(np.ones((5, 8)), strategy=NumpyPCA())
    with pytest.raises(ValueError):
        project_embeddings(np.zeros((0, 8)))
