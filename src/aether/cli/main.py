"""ajj command-line entry point.

Aether commands are parsed with argparse. Anything else is handed to jj
unchanged, so ``ajj log`` behaves like ``jj log``.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from aether import __version__
from aether.cli import commands
from aether.cli.commands import CommandContext
from aether.cli.output import emit_error
from aether.config import get_settings
from aether.errors import AetherError, ErrorCode
from aether.logging import setup_logging
from aether.logging_schema import LogEvent

logger = logging.getLogger(__name__)

AETHER_COMMANDS = frozenset(
    {"workspace", "run", "status", "list", "cleanup", "logs", "restart", "stop", "start", "exec"}
)
WORKSPACE_COMMANDS = frozenset({"add", "forget"})

# Global options that consume the next token
_VALUED_OPTIONS = frozenset({"-o", "--output", "-c", "--config"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ajj",
        description="Jujutsu workspaces with per-workspace container infrastructure",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--output", "-o",
        choices=["human", "json"],
        default="human",
        help="Output format",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to aether.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # workspace add / forget
    workspace_parser = subparsers.add_parser("workspace", help="Manage workspaces")
    workspace_sub = workspace_parser.add_subparsers(dest="workspace_command", required=True)

    add_parser = workspace_sub.add_parser("add", help="Create a workspace with its infrastructure")
    add_parser.add_argument("destination", help="Path of the new workspace")
    add_parser.add_argument("--revision", "-r", help="Revision to check out")

    forget_parser = workspace_sub.add_parser("forget", help="Forget a workspace and remove its infrastructure")
    forget_parser.add_argument("workspace", help="Workspace name")

    # run
    run_parser = subparsers.add_parser("run", help="Run a local command with the workspace .env loaded")
    run_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run")

    subparsers.add_parser("status", help="Show jj status and infrastructure status")
    subparsers.add_parser("list", help="List registered workspaces")

    cleanup_parser = subparsers.add_parser("cleanup", help="Find containers no workspace owns")
    cleanup_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Remove orphans instead of only reporting them",
    )

    logs_parser = subparsers.add_parser("logs", help="Show service logs")
    logs_parser.add_argument("service", help="Service name")
    logs_parser.add_argument("--tail", "-n", type=int, help="Number of lines from the end")

    for action, text in (
        ("restart", "Restart a service"),
        ("stop", "Stop a service"),
        ("start", "Start a service"),
    ):
        action_parser = subparsers.add_parser(action, help=text)
        action_parser.add_argument("service", help="Service name")

    exec_parser = subparsers.add_parser("exec", help="Execute a command in a service container")
    exec_parser.add_argument("service", help="Service name")
    exec_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to execute")

    return parser


def find_command(argv: list[str]) -> int | None:
    """Index of the first token that is not a global option."""
    skip = False
    for index, token in enumerate(argv):
        if skip:
            skip = False
            continue
        if token in _VALUED_OPTIONS:
            skip = True
            continue
        if token.startswith("-"):
            continue
        return index
    return None


def is_passthrough(argv: list[str]) -> bool:
    """True when argv names a command Aether does not handle."""
    index = find_command(argv)
    if index is None:
        return False
    command = argv[index]
    if command not in AETHER_COMMANDS:
        return True
    if command == "workspace":
        rest = argv[index + 1:]
        return bool(rest) and not rest[0].startswith("-") and rest[0] not in WORKSPACE_COMMANDS
    return False


def _strip_separator(cmd: list[str]) -> list[str]:
    if cmd and cmd[0] == "--":
        return cmd[1:]
    return cmd


async def dispatch(args: argparse.Namespace, ctx: CommandContext) -> int:
    if args.command == "workspace":
        if args.workspace_command == "add":
            return await commands.workspace_add(ctx, args.destination, args.revision)
        return await commands.workspace_forget(ctx, args.workspace)

    if args.command == "status":
        return await commands.status(ctx)

    if args.command == "list":
        return await commands.list_workspaces(ctx)

    if args.command == "cleanup":
        return await commands.cleanup(ctx, args.force)

    if args.command == "logs":
        return await commands.logs(ctx, args.service, args.tail)

    if args.command in ("restart", "stop", "start"):
        return await commands.service_action(ctx, args.command, args.service)

    if args.command == "exec":
        return await commands.container_exec(ctx, args.service, _strip_separator(args.cmd))

    raise AetherError(ErrorCode.INTERNAL_ERROR, f"Unhandled command: {args.command}")


def run(argv: list[str] | None = None) -> int:
    """Parse argv and execute; returns the process exit code."""
    argv = list(sys.argv[1:] if argv is None else argv)

    if is_passthrough(argv):
        setup_logging(get_settings().logging)
        index = find_command(argv)
        try:
            return commands.passthrough(argv[index:])
        except AetherError as e:
            emit_error(e, as_json=False)
            return e.exit_code

    parser = build_parser()
    args = parser.parse_args(argv)
    as_json = args.output == "json"

    setup_logging(get_settings().logging, verbose=args.verbose)
    ctx = CommandContext(json=as_json, config_path=args.config)

    try:
        if args.command == "run":
            return commands.run_local(ctx, _strip_separator(args.cmd))
        return asyncio.run(dispatch(args, ctx))
    except AetherError as e:
        emit_error(e, as_json)
        return e.exit_code
    except Exception as e:
        logger.exception(
            "Command failed",
            extra={"event": LogEvent.COMMAND_FAILED, "command": args.command},
        )
        emit_error(e, as_json)
        return 1


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
