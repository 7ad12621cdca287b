# oracle/scoring/__init__.py
"""
Scoring module: library snapshots, taste profile, per-candidate signals,
franchise detection, shelf assembly and the worker pipeline.

The worker protocol imports scoring types, so this package keeps no eager
imports; use oracle.scoring.pipeline.run_pipeline directly.
"""
