"""Workspace state registry.

One JSON document per repository, ``<repo_root>/.aether/state.json``:

    {
        "version": "1.0",
        "workspaces": {
            "<name>": {
                "name": ..., "path": ..., "namespace": ..., "backend_type": ...,
                "created_at": ..., "resources": [ResourceInfo, ...]
            }
        }
    }

Every operation holds the exclusive lock on ``state.lock`` from load to
store. Writes go to a temporary file in the same directory which is then
renamed over the document, so readers never see a partial write.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from aether.backends.interface import ResourceHandle
from aether.config import StateConfig
from aether.errors import StateError
from aether.logging_schema import LogEvent
from aether.provisioner.lock import FileLock

logger = logging.getLogger(__name__)

REGISTRY_VERSION = "1.0"


class ResourceInfo(BaseModel):
    """Persisted form of a ResourceHandle."""

    service_name: str
    container_id: str
    image: str
    port_mappings: dict[int, int] = {}

    @classmethod
    def from_handle(cls, handle: ResourceHandle) -> "ResourceInfo":
        return cls(
            service_name=handle.service_name,
            container_id=handle.container_id,
            image=handle.image,
            port_mappings=dict(handle.port_mappings),
        )


class WorkspaceState(BaseModel):
    """Registry entry for one workspace."""

    name: str
    path: str
    namespace: str
    backend_type: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resources: list[ResourceInfo] = []


class WorkspaceRegistry(BaseModel):
    """The persisted document."""

    version: str = REGISTRY_VERSION
    workspaces: dict[str, WorkspaceState] = {}


class StateManager:
    """Lock-guarded access to the workspace registry of one repository."""

    def __init__(self, repo_root: Path, config: StateConfig | None = None) -> None:
        config = config or StateConfig()
        state_dir = repo_root / config.dir_name
        self._state_file = state_dir / config.file_name
        self._lock = FileLock(state_dir / config.lock_name)

    @property
    def state_file(self) -> Path:
        return self._state_file

    @property
    def lock_file(self) -> Path:
        return self._lock.path

    def _load(self) -> WorkspaceRegistry:
        if not self._state_file.exists():
            return WorkspaceRegistry()
        try:
            return WorkspaceRegistry.model_validate_json(self._state_file.read_bytes())
        except OSError as e:
            raise StateError(f"Failed to read {self._state_file}: {e}") from e
        except ValidationError as e:
            raise StateError(f"Corrupt state file {self._state_file}: {e}") from e

    def _store(self, registry: WorkspaceRegistry) -> None:
        directory = self._state_file.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self._state_file.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as tmp:
                    tmp.write(registry.model_dump_json(indent=2))
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self._state_file)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StateError(f"Failed to write {self._state_file}: {e}") from e

    def register(self, state: WorkspaceState) -> None:
        """Insert or overwrite the entry for ``state.name``."""
        with self._lock:
            registry = self._load()
            registry.workspaces[state.name] = state
            self._store(registry)
        logger.info(
            "Registered workspace",
            extra={
                "event": LogEvent.WORKSPACE_REGISTERED,
                "workspace": state.name,
                "namespace": state.namespace,
                "resources": len(state.resources),
            },
        )

    def unregister(self, name: str) -> None:
        """Remove the entry for ``name``; absent names are a no-op."""
        with self._lock:
            registry = self._load()
            removed = registry.workspaces.pop(name, None)
            self._store(registry)
        if removed is not None:
            logger.info(
                "Unregistered workspace",
                extra={"event": LogEvent.WORKSPACE_UNREGISTERED, "workspace": name},
            )

    def get(self, name: str) -> WorkspaceState | None:
        with self._lock:
            registry = self._load()
        return registry.workspaces.get(name)

    def list(self) -> list[WorkspaceState]:
        with self._lock:
            registry = self._load()
        return list(registry.workspaces.values())
