"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeFarmStore: In-memory documents with atomic, version-checked batches
"""

from .store import FakeFarmStore

__all__ = ["FakeFarmStore"]
