# oracle/migration/__init__.py
"""
Migration module for the recommendation engine.

Upgrades stored collections once at startup, never losing data on failure.
"""

from .registry import MigrationRegistry, MigrationStats
from .builtin import registry, run_startup_migrations

__all__ = [
    "MigrationRegistry",
    "MigrationStats",
    "registry",
    "run_startup_migrations",
]
