# oracle/candidates/__init__.py
from .pool import CandidatePool, CandidatePoolAssembler, candidate_from_browse, candidate_from_catalog

__all__ = ["CandidatePool", "CandidatePoolAssembler", "candidate_from_browse", "candidate_from_catalog"]
