"""Composition root for the Shoal transfer engine.

Builds the SQLite farm store, wires the transfer plan and checklist
services around it, and hands them to the CLI. Nothing outside this
module imports both core services and concrete adapters.
"""

import asyncio
import json
import logging
import sys
from typing import Any

from shoal.adapters.cli.commands import CLICommandHandler, format_result, run_command
from shoal.adapters.store.sqlite import SQLiteFarmStore
from shoal.config import Settings, load_settings
from shoal.core.executor import RelocationExecutor
from shoal.core.task_service import TaskService
from shoal.core.transfer_service import TransferPlanService


def parse_command_line(command_line: str) -> tuple[str, dict[str, Any]]:
    """Split ``command {json}`` into the command name and its arguments.

    Raises:
        ValueError: If the arguments are not a JSON object.
    """
    parts = command_line.strip().split(maxsplit=1)
    if not parts:
        raise ValueError("Empty command")

    command = parts[0].lower()
    if len(parts) == 1:
        return command, {}
    try:
        args = json.loads(parts[1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON arguments: {e}") from e
    if not isinstance(args, dict):
        raise ValueError("Arguments must be a JSON object")
    return command, args


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Run interactive CLI loop.

    Provides a REPL-like interface for plan and task commands.

    Args:
        cli_handler: CLICommandHandler instance for executing commands.
    """
    logger = logging.getLogger(__name__)
    logger.info("Starting interactive CLI. Type 'help' for available commands or 'exit' to quit.")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # Read command from stdin in a thread to avoid blocking
            command_line = await loop.run_in_executor(None, input, "shoal> ")
            command_line = command_line.strip()

            if not command_line:
                continue

            if command_line.lower() == "exit":
                logger.info("Exiting CLI")
                break

            if command_line.lower() == "help":
                _print_cli_help()
                continue

            try:
                command, args = parse_command_line(command_line)
                result = await run_command(cli_handler, command, args)
            except ValueError as e:
                result = {"status": "error", "message": str(e)}
            print(format_result(result))

        except EOFError:
            # Ctrl+D to exit
            logger.info("EOF received, exiting CLI")
            break
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            continue


def _print_cli_help() -> None:
    """Print CLI help message."""
    help_text = """
Available Commands (JSON format):

  Transfer plans
    create_plan       {"name": "...", "notes": "..."}
    list_plans        {"status": "planning|ready|in-progress|completed|cancelled"}
    show_plan         {"plan_id": "..."}
    add_task          {"plan_id": "...", "transfer": {...}, "acknowledge_warnings": false}
    check_task        {"plan_id": "...", "transfer": {...}}
    finalize          {"plan_id": "..."}
    cancel_plan       {"plan_id": "..."}
    delete_plan       {"plan_id": "..."}
    reconcile         {"plan_id": "..."}

  Transfer tasks
    execute           {"task_id": "..."}
    block             {"task_id": "...", "reason": "temperature|size|leak|other", "notes": "..."}
    unblock           {"task_id": "...", "action": "continue|cancel"}
    remove_task       {"task_id": "..."}

  Checklist tasks
    create_task       {"title": "...", "notes": "...", "transfer": {...}}
    list_tasks        {"status": "pending|blocked|completed|cancelled"}
    complete_task     {"task_id": "..."}
    block_checklist_task    {"task_id": "...", "reason": "...", "notes": "..."}
    unblock_checklist_task  {"task_id": "...", "action": "continue|cancel"}
    delete_task       {"task_id": "..."}

  Aquariums
    repair_occupancy  {"aquarium_ids": ["..."]}

  A transfer object looks like:
    {"fish_id": "...", "fish_kind": "catalog|reception", "quantity": 5,
     "source_aquarium_id": "...", "target_aquarium_id": "... or SHIPMENT",
     "allow_mixing": false}

  help
    Show this help message.

  exit
    Exit the CLI.
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Results go to stdout, logs to stderr.
    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )


def build_handler(settings: Settings, store: SQLiteFarmStore) -> CLICommandHandler:
    """Wire the core services around a store."""
    executor = RelocationExecutor(store)
    plans = TransferPlanService(store, settings.farm_id, executor=executor)
    tasks = TaskService(store, settings.farm_id, executor=executor)
    return CLICommandHandler(plans, tasks, operator=settings.operator_name)


async def bootstrap(argv: list[str] | None = None) -> int:
    """Run one command from argv, or the interactive shell.

    The store is always closed on the way out.

    Args:
        argv: ``[command, json-args]`` for one-shot mode. Empty or None
            starts the interactive shell.

    Returns:
        Process exit code: 0 on success, 1 if a one-shot command failed.
    """
    # Load configuration
    settings = load_settings()

    # Configure logging
    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.debug(f"Loading Shoal for farm {settings.farm_id}...")

    # Instantiate adapters
    store = SQLiteFarmStore(
        db_path=settings.store_sqlite_path,
        pool_size=settings.store_pool_size,
    )
    logger.debug(f"Farm store initialized: {settings.store_sqlite_path}")

    # Initialize core services
    cli_handler = build_handler(settings, store)

    # Select run mode and start
    try:
        if argv:
            try:
                command, args = parse_command_line(" ".join(argv))
                result = await run_command(cli_handler, command, args)
            except ValueError as e:
                result = {"status": "error", "message": str(e)}
            print(format_result(result))
            return 0 if result.get("status") != "error" else 1

        await _run_cli_interactive(cli_handler)
        return 0
    finally:
        await store.close()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Successful shutdown
        1: Command failed or fatal runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        exit_code = asyncio.run(bootstrap(sys.argv[1:]))
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
