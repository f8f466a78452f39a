"""Test suite for the Shoal transfer engine.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - Minimal dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - SQLite store against a temporary database file

3. fakes/: Port implementations for testing
   - In-memory FarmStorePort with atomic, version-checked batches
   - Used by core unit tests and workflow tests
"""
