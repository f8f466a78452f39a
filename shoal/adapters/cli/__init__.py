"""Command-line interface adapters.

Provides JSON commands for operating the Shoal transfer engine:
- create_plan / add_task / finalize: Build a transfer plan
- execute / block / unblock: Work through a plan's tasks
- create_task / complete_task: Manage checklist tasks
"""
