"""External adapters for the Shoal transfer engine.

This package contains all external dependencies (SQLite, the command
shell) and provides implementations of the core port interfaces.

Adapter Organization:

- store/: Adapters for farm document persistence (SQLite)
- cli/: Command-line interface and operator commands
"""
