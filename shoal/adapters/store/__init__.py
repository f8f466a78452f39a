"""Farm store adapters for document persistence and atomic batches.

Implementations:
- SQLite (zero-config, single-file)
"""
