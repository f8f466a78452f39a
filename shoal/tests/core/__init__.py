"""Unit tests for the transfer engine core.

Services run against FakeFarmStore; nothing here touches SQLite.
"""
