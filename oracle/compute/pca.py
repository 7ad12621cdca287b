# oracle/compute/pca.py
"""
Projeção 3D do espaço de embeddings (mapa "galáxia").

Pipeline: centraliza -> PCA por iteração de potência (3 componentes, 30
iterações, deflação) -> projeta -> escala cada eixo para [-spread, spread].

Estratégias:
- TorchPCA: mesma iteração em GPU (CUDA/MPS); disponível só quando há
  dispositivo acelerado.
- NumpyPCA: CPU, sempre disponível.

project_embeddings escolhe a estratégia pela sondagem de GPU e cai para CPU em qualquer
falha ou saída degenerada.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np
import torch

logger = logging.getLogger(__name__)

PCA_ITERATIONS = 30
PCA_COMPONENTS = 3
VARIANCE_EPS = 1e-6


class PCAStrategy(Protocol):
    name: str

    def project(self, vectors: np.ndarray, components: int = PCA_COMPONENTS) -> np.ndarray: ...


class NumpyPCA:
    name = "numpy"

    def __init__(self, iterations: int = PCA_ITERATIONS, rng: Optional[np.random.Generator] = None) -> None:
        self.iterations = int(iterations)
        self.rng = rng or np.random.default_rng()

    def project(self, vectors: np.ndarray, components: int = PCA_COMPONENTS) -> np.ndarray:
        x = np.asarray(vectors, dtype=np.float64)
        centered = x - x.mean(axis=0, keepdims=True)
        pcs = []
        for _ in range(components):
            v = self.rng.random(centered.shape[1]) - 0.5
            for _ in range(self.iterations):
                v = centered.T @ (centered @ v)
                for prev in pcs:
                    v -= np.dot(v, prev) * prev
                mag = np.linalg.norm(v)
                if mag > 0:
                    v /= mag
            pcs.append(v)
        return centered @ np.stack(pcs, axis=1)


class TorchPCA:
    name = "torch"

    def __init__(self, device: Optional[str] = None, iterations: int = PCA_ITERATIONS) -> None:
        self.device = device or self.detect_device()
        self.iterations = int(iterations)

    @staticmethod
    def detect_device() -> Optional[str]:
        if torch.cuda.is_available():
            return "cuda"
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return "mps"
        return None

    @classmethod
    def is_supported(cls) -> bool:
        return cls.detect_device() is not None

    def project(self, vectors: np.ndarray, components: int = PCA_COMPONENTS) -> np.ndarray:
        if self.device is None:
            raise RuntimeError("no accelerated device available")
        x = torch.as_tensor(np.asarray(vectors, dtype=np.float32), device=self.device)
        centered = x - x.mean(dim=0, keepdim=True)
        pcs = []
        for _ in range(components):
            v = torch.rand(centered.shape[1], device=self.device) - 0.5
            for _ in range(self.iterations):
                v = centered.T @ (centered @ v)
                for prev in pcs:
                    v = v - torch.dot(v, prev) * prev
                mag = torch.linalg.norm(v)
                if mag > 0:
                    v = v / mag
            pcs.append(v)
        return (centered @ torch.stack(pcs, dim=1)).cpu().numpy().astype(np.float64)


def normalize_positions(positions: np.ndarray, spread: float) -> np.ndarray:
    """Escala cada eixo para [-spread, spread]; eixo sem variação vira 0."""
    pos = np.asarray(positions, dtype=np.float64)
    mins = pos.min(axis=0)
    ranges = pos.max(axis=0) - mins
    out = np.zeros_like(pos)
    nz = ranges > 0
    out[:, nz] = ((pos[:, nz] - mins[nz]) / ranges[nz] - 0.5) * 2 * spread
    return out


def validate_positions(positions: np.ndarray) -> bool:
    pos = np.asarray(positions)
    n = pos.shape[0] if pos.ndim else 0
    if n < 2:
        return n > 0
    if not np.all(np.isfinite(pos)):
        return False
    return bool(np.any(np.abs(pos - pos[0]) > VARIANCE_EPS))


def select_strategy() -> PCAStrategy:
    if TorchPCA.is_supported():
        return TorchPCA()
    return NumpyPCA()


def project_embeddings(
    vectors: np.ndarray, spread: float = 100.0, strategy: Optional[PCAStrategy] = None
) -> np.ndarray:
    """Vetores (n, d) -> posições (n, 3) normalizadas. Levanta ValueError se degenerado."""
    mat = np.asarray(vectors, dtype=np.float32)
    if mat.ndim != 2 or mat.shape[0] == 0:
        raise ValueError("expected a non-empty (n, d) matrix")

    strategy = strategy or select_strategy()
    positions: Optional[np.ndarray] = None
    try:
        positions = normalize_positions(strategy.project(mat), spread)
    except Exception as e:
        logger.warning(f"PCA ({strategy.name}) falhou, usando CPU: {e}")

    if (positions is None or not validate_positions(positions)) and not isinstance(strategy, NumpyPCA):
        logger.info("Saída degenerada ou ausente; recalculando com NumpyPCA")
        positions = normalize_positions(NumpyPCA().project(mat), spread)

    if positions is None or not validate_positions(positions):
        raise ValueError("degenerate projection")
    return positions
