"""Integration tests for adapter implementations.

These tests exercise adapters against real local resources (a
temporary SQLite database) to validate correct translation between
core domain models and stored documents.
"""
