"""Structured command output.

Every command result has a pydantic model; ``--output json`` prints it with
``model_dump_json``, human mode prints text.
"""

import sys

from pydantic import BaseModel

from aether.backends.interface import ResourceStatus
from aether.errors import AetherError, ErrorCode, ErrorDetail, ErrorResponse
from aether.provisioner.state import ResourceInfo, WorkspaceState


class WorkspaceInfo(BaseModel):
    name: str
    root: str
    backend: str
    namespace: str
    resources: list[ResourceInfo] = []

    @classmethod
    def from_state(cls, state: WorkspaceState) -> "WorkspaceInfo":
        return cls(
            name=state.name,
            root=state.path,
            backend=state.backend_type,
            namespace=state.namespace,
            resources=state.resources,
        )


class WorkspaceOutput(BaseModel):
    """Result of ``workspace add`` / ``workspace forget``."""

    status: str
    operation: str
    workspace: WorkspaceInfo | None = None
    removed_resources: int | None = None


class ContainerStatus(BaseModel):
    service_name: str
    container_id: str
    status: str
    port_mappings: dict[int, int] = {}

    @classmethod
    def from_status(cls, status: ResourceStatus) -> "ContainerStatus":
        return cls(
            service_name=status.service_name,
            container_id=status.container_id,
            status=status.status,
            port_mappings=status.port_mappings,
        )


class StatusOutput(BaseModel):
    status: str = "ok"
    workspace: str | None = None
    namespace: str | None = None
    backend: str | None = None
    resources: list[ContainerStatus] = []
    jj_status: str | None = None
    working_copy: str | None = None


class ListOutput(BaseModel):
    status: str = "ok"
    workspaces: list[WorkspaceState] = []


class CleanupOutput(BaseModel):
    status: str
    orphaned_count: int
    removed: list[str] = []


class LogsOutput(BaseModel):
    status: str = "ok"
    service: str
    logs: str


class ServiceActionOutput(BaseModel):
    status: str = "ok"
    service: str
    message: str | None = None


class ExecOutput(BaseModel):
    status: str
    service: str
    exit_code: int
    stdout: str
    stderr: str


def emit_json(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2, exclude_none=True))


def emit_error(error: Exception, as_json: bool) -> None:
    """Render a command failure on the appropriate stream."""
    if isinstance(error, AetherError):
        response = error.to_response()
        message = error.message
    else:
        response = ErrorResponse(
            error=ErrorDetail(code=ErrorCode.INTERNAL_ERROR.value, message=str(error))
        )
        message = str(error)

    if as_json:
        print(response.model_dump_json(indent=2))
    else:
        print(f"Error: {message}", file=sys.stderr)


def format_ports(port_mappings: dict[int, int]) -> list[str]:
    return [f"port {internal} -> {external}" for internal, external in sorted(port_mappings.items())]
