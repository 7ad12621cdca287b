# oracle/worker/__init__.py
"""
Scoring worker: typed envelopes (protocol) and the process/thread runners.
"""
