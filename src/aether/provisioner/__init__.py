"""Workspace provisioning: ports, context injection, registry, orchestration."""

from aether.provisioner.context import ContextInjector
from aether.provisioner.lock import FileLock
from aether.provisioner.orchestrator import Provisioner, ReconcileReport
from aether.provisioner.ports import PortAllocator
from aether.provisioner.state import (
    ResourceInfo,
    StateManager,
    WorkspaceRegistry,
    WorkspaceState,
)

__all__ = [
    "ContextInjector",
    "FileLock",
    "PortAllocator",
    "Provisioner",
    "ReconcileReport",
    "ResourceInfo",
    "StateManager",
    "WorkspaceRegistry",
    "WorkspaceState",
]
