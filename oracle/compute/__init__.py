# oracle/compute/__init__.py
from .pca import NumpyPCA, PCAStrategy, TorchPCA, project_embeddings, validate_positions

__all__ = ["NumpyPCA", "PCAStrategy", "TorchPCA", "project_embeddings", "validate_positions"]
