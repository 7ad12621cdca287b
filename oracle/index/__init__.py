# oracle/index/__init__.py
from .ann_index import AnnIndex

__all__ = ["AnnIndex"]
