"""Command handlers.

Each handler returns the process exit code. Failures propagate as
AetherError to ``main``, which renders them.
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

from aether.backends import ResourceNaming, create_backend
from aether.cli.output import (
    CleanupOutput,
    ContainerStatus,
    ExecOutput,
    ListOutput,
    LogsOutput,
    ServiceActionOutput,
    StatusOutput,
    WorkspaceInfo,
    WorkspaceOutput,
    emit_json,
    format_ports,
)
from aether.config import AetherSettings, get_settings
from aether.errors import ConfigError, DelegationError
from aether.project import AetherConfig, find_config, find_repo_root, load_config
from aether.provisioner import Provisioner, StateManager
from aether.provisioner.orchestrator import short_id
from aether.vcs.jj import JjCommand, parse_status

logger = logging.getLogger(__name__)

ENV_FILE = ".env"


@dataclass
class CommandContext:
    """Per-invocation options shared by all commands."""

    json: bool = False
    config_path: Path | None = None
    cwd: Path = field(default_factory=Path.cwd)
    settings: AetherSettings = field(default_factory=get_settings)

    def load_config(self) -> AetherConfig:
        path = self.config_path or find_config(self.cwd)
        return load_config(path)

    def load_config_if_present(self) -> AetherConfig | None:
        """Config for backend selection; commands on existing workspaces work without one."""
        if self.config_path is not None:
            return load_config(self.config_path)
        try:
            path = find_config(self.cwd)
        except ConfigError:
            return None
        return load_config(path)

    def provisioner(self, config: AetherConfig | None = None) -> Provisioner:
        repo_root = find_repo_root(self.cwd)
        backend = create_backend(config.backend if config else None, self.settings)
        return Provisioner(
            backend=backend,
            state=StateManager(repo_root, self.settings.state),
            naming=ResourceNaming(self.settings.state),
        )


# =============================================================================
# Workspace lifecycle
# =============================================================================


async def workspace_add(ctx: CommandContext, destination: str, revision: str | None) -> int:
    config = ctx.load_config()
    provisioner = ctx.provisioner(config)

    dest = Path(destination)
    if not dest.is_absolute():
        dest = ctx.cwd / dest
    state = await provisioner.add_workspace(config, dest, revision)

    if ctx.json:
        emit_json(
            WorkspaceOutput(
                status="ready",
                operation="workspace_add",
                workspace=WorkspaceInfo.from_state(state),
            )
        )
    else:
        print(f"✓ Workspace '{state.name}' created with {len(state.resources)} containers")
    return 0


async def workspace_forget(ctx: CommandContext, workspace: str) -> int:
    provisioner = ctx.provisioner(ctx.load_config_if_present())
    removed = await provisioner.forget_workspace(workspace)

    if ctx.json:
        emit_json(
            WorkspaceOutput(
                status="removed",
                operation="workspace_forget",
                removed_resources=removed,
            )
        )
    else:
        print(f"✓ Cleaned up {removed} containers")
        print(f"✓ Workspace '{workspace}' forgotten")
    return 0


# =============================================================================
# Inspection
# =============================================================================


async def status(ctx: CommandContext) -> int:
    try:
        jj_text: str | None = JjCommand.status().execute().stdout
    except DelegationError as e:
        logger.debug("jj status unavailable: %s", e.message)
        jj_text = None
    working_copy = parse_status(jj_text).working_copy if jj_text else None

    try:
        provisioner = ctx.provisioner(ctx.load_config_if_present())
        state = provisioner.state.get(ctx.cwd.resolve().name)
    except ConfigError:
        state = None

    if state is None:
        if ctx.json:
            emit_json(StatusOutput(jj_status=jj_text, working_copy=working_copy))
        else:
            if jj_text:
                print(jj_text, end="")
            print("\n(No Aether infrastructure in current workspace)")
        return 0

    resources = await provisioner.backend.status(state.namespace)

    if ctx.json:
        emit_json(
            StatusOutput(
                workspace=state.name,
                namespace=state.namespace,
                backend=state.backend_type,
                resources=[ContainerStatus.from_status(r) for r in resources],
                jj_status=jj_text,
                working_copy=working_copy,
            )
        )
        return 0

    if jj_text:
        print(jj_text, end="")
    print("\n=== Infrastructure Status ===")
    print(f"Namespace: {state.namespace}")
    print(f"Backend: {state.backend_type}")
    for resource in resources:
        print(f"  {resource.service_name} [{short_id(resource.container_id)}]: {resource.status}")
        for line in format_ports(resource.port_mappings):
            print(f"    {line}")
    return 0


async def list_workspaces(ctx: CommandContext) -> int:
    state = StateManager(find_repo_root(ctx.cwd), ctx.settings.state)
    workspaces = sorted(state.list(), key=lambda ws: ws.name)

    if ctx.json:
        emit_json(ListOutput(workspaces=workspaces))
    elif not workspaces:
        print("No workspaces registered.")
    else:
        print("=== Workspaces ===")
        for ws in workspaces:
            print(f"  {ws.name} ({ws.backend_type}, {len(ws.resources)} resources)")
            print(f"    path: {ws.path}")
            print(f"    namespace: {ws.namespace}")
    return 0


async def cleanup(ctx: CommandContext, force: bool) -> int:
    provisioner = ctx.provisioner(ctx.load_config_if_present())
    report = await provisioner.reconcile(force=force)

    if ctx.json:
        emit_json(
            CleanupOutput(
                status=report.status,
                orphaned_count=len(report.orphans),
                removed=report.removed,
            )
        )
        return 0

    if not report.orphans:
        print("No orphaned containers found.")
        return 0

    print(f"Found {len(report.orphans)} orphaned container(s):")
    for orphan in report.orphans:
        print(f"  - {short_id(orphan.container_id)} ({orphan.namespace}/{orphan.service_name})")
    if force:
        for removed in report.removed:
            print(f"  Removed: {removed}")
        print("Cleanup complete.")
    else:
        print("\n(Dry run - use --force to actually remove)")
    return 0


# =============================================================================
# Service operations
# =============================================================================


async def logs(ctx: CommandContext, service: str, tail: int | None) -> int:
    provisioner = ctx.provisioner(ctx.load_config_if_present())
    state = provisioner.current_workspace(ctx.cwd)
    text = await provisioner.backend.logs(state.namespace, service, tail)

    if ctx.json:
        emit_json(LogsOutput(service=service, logs=text))
    elif not text:
        print(f"No logs available for service '{service}'")
    else:
        print(text, end="")
    return 0


_ACTION_MESSAGES = {
    "restart": ("restarted", "Service '{}' restarted successfully"),
    "stop": ("stopped", "Service '{}' stopped"),
    "start": ("started", "Service '{}' started"),
}


async def service_action(ctx: CommandContext, action: str, service: str) -> int:
    """restart, stop or start one service of the current workspace."""
    provisioner = ctx.provisioner(ctx.load_config_if_present())
    state = provisioner.current_workspace(ctx.cwd)

    backend = provisioner.backend
    operation = {"restart": backend.restart, "stop": backend.stop, "start": backend.start}[action]
    await operation(state.namespace, service)

    message, text = _ACTION_MESSAGES[action]
    if ctx.json:
        emit_json(ServiceActionOutput(service=service, message=message))
    else:
        print(text.format(service))
    return 0


async def container_exec(ctx: CommandContext, service: str, command: list[str]) -> int:
    if not command:
        raise ConfigError("No command provided")

    provisioner = ctx.provisioner(ctx.load_config_if_present())
    state = provisioner.current_workspace(ctx.cwd)
    result = await provisioner.backend.run(state.namespace, service, command)

    if ctx.json:
        emit_json(
            ExecOutput(
                status="ok" if result.exit_code == 0 else "error",
                service=service,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        )
    else:
        print(result.stdout, end="")
        if result.stderr:
            print(result.stderr, end="", file=sys.stderr)
    return result.exit_code


# =============================================================================
# Local execution and delegation
# =============================================================================


def load_env_file(path: Path) -> dict[str, str]:
    """Variables from a dotenv file; a missing file yields none."""
    if not path.is_file():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def run_local(ctx: CommandContext, command: list[str]) -> int:
    """Run a local command with the workspace .env merged over the environment."""
    if not command:
        raise ConfigError("No command provided")

    env = {**os.environ, **load_env_file(ctx.cwd / ENV_FILE)}
    try:
        completed = subprocess.run(command, env=env, cwd=ctx.cwd, check=False)
    except FileNotFoundError as e:
        raise ConfigError(f"Command not found: {command[0]}") from e
    return completed.returncode if completed.returncode >= 0 else 1


def passthrough(args: list[str]) -> int:
    """Delegate an unrecognised command to jj verbatim."""
    try:
        output = JjCommand(args).execute()
    except DelegationError as e:
        if e.returncode < 0:
            raise
        print(e.stderr, end="", file=sys.stderr)
        return e.returncode
    print(output.stdout, end="")
    print(output.stderr, end="", file=sys.stderr)
    return 0


__all__ = [
    "CommandContext",
    "cleanup",
    "container_exec",
    "list_workspaces",
    "load_env_file",
    "logs",
    "passthrough",
    "run_local",
    "service_action",
    "status",
    "workspace_add",
    "workspace_forget",
]
