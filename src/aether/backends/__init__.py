"""Resource backends.

Exactly one backend is active per invocation, selected by the [backend]
table of aether.toml.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from aether.backends.docker import DockerBackend
from aether.backends.interface import (
    Backend,
    ExecResult,
    PortReallocator,
    ResourceHandle,
    ResourceStatus,
    ServiceSpec,
)
from aether.backends.naming import ResourceNaming
from aether.config import AetherSettings, get_settings

if TYPE_CHECKING:
    from aether.project import DockerBackendConfig


def create_backend(
    backend_config: DockerBackendConfig | None = None,
    settings: AetherSettings | None = None,
) -> Backend:
    """Build the backend adapter for the configured backend type.

    A ``socket`` in the [backend] table overrides AETHER_DOCKER_HOST; a bare
    path is treated as a unix socket.
    """
    settings = settings or get_settings()
    docker_config = settings.docker
    if backend_config is not None and backend_config.socket:
        host = backend_config.socket
        if host.startswith("/"):
            host = f"unix://{host}"
        docker_config = docker_config.model_copy(update={"host": host})

    return DockerBackend(config=docker_config, naming=ResourceNaming(settings.state))


__all__ = [
    "Backend",
    "DockerBackend",
    "ExecResult",
    "PortReallocator",
    "ResourceHandle",
    "ResourceNaming",
    "ResourceStatus",
    "ServiceSpec",
    "create_backend",
]
