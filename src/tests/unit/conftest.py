"""Fixtures for Aether unit tests."""

import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from aether.backends import (
    Backend,
    ExecResult,
    PortReallocator,
    ResourceHandle,
    ResourceStatus,
    ServiceSpec,
)
from aether.backends.naming import ResourceNaming
from aether.config import DockerConfig, StateConfig
from aether.errors import ServiceNotFoundError
from aether.provisioner.state import StateManager


class FakeBackend(Backend):
    """In-memory backend recording every call.

    Containers are kept per namespace as ResourceStatus entries; ids are
    sequential so assertions stay readable.
    """

    def __init__(self) -> None:
        self.namespaces: dict[str, list[ResourceStatus]] = {}
        self.calls: list[tuple] = []
        self.exec_result = ExecResult(exit_code=0, stdout="", stderr="")
        self.log_text = ""
        self._counter = 0

    @property
    def backend_type(self) -> str:
        return "docker"

    def _find(self, namespace: str, service: str) -> ResourceStatus:
        for resource in self.namespaces.get(namespace, []):
            if resource.service_name == service:
                return resource
        raise ServiceNotFoundError(service, namespace)

    async def provision(
        self,
        namespace: str,
        services: list[ServiceSpec],
        reallocate: PortReallocator | None = None,
    ) -> list[ResourceHandle]:
        self.calls.append(("provision", namespace, [s.name for s in services]))
        handles = []
        for spec in services:
            self._counter += 1
            container_id = f"c{self._counter:03d}" + "0" * 60
            self.namespaces.setdefault(namespace, []).append(
                ResourceStatus(
                    service_name=spec.name,
                    container_id=container_id,
                    status="running",
                    port_mappings=dict(spec.port_mappings),
                    namespace=namespace,
                )
            )
            handles.append(
                ResourceHandle(
                    service_name=spec.name,
                    container_id=container_id,
                    image=spec.image,
                    port_mappings=dict(spec.port_mappings),
                )
            )
        return handles

    async def deprovision(self, namespace: str) -> None:
        self.calls.append(("deprovision", namespace))
        self.namespaces.pop(namespace, None)

    async def status(self, namespace: str) -> list[ResourceStatus]:
        return list(self.namespaces.get(namespace, []))

    async def logs(self, namespace: str, service: str, tail: int | None = None) -> str:
        self._find(namespace, service)
        self.calls.append(("logs", namespace, service, tail))
        return self.log_text

    async def restart(self, namespace: str, service: str) -> None:
        self._find(namespace, service).status = "running"
        self.calls.append(("restart", namespace, service))

    async def stop(self, namespace: str, service: str) -> None:
        self._find(namespace, service).status = "exited"
        self.calls.append(("stop", namespace, service))

    async def start(self, namespace: str, service: str) -> None:
        self._find(namespace, service).status = "running"
        self.calls.append(("start", namespace, service))

    async def run(self, namespace: str, service: str, command: list[str]) -> ExecResult:
        self._find(namespace, service)
        self.calls.append(("run", namespace, service, list(command)))
        return self.exec_result

    async def list_managed(self) -> list[ResourceStatus]:
        return [r for resources in self.namespaces.values() for r in resources]

    async def remove(self, container_id: str) -> None:
        self.calls.append(("remove", container_id))
        for namespace, resources in self.namespaces.items():
            self.namespaces[namespace] = [r for r in resources if r.container_id != container_id]


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """setup_logging replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def naming() -> ResourceNaming:
    """Default naming conventions."""
    return ResourceNaming(StateConfig())


@pytest.fixture
def docker_config() -> DockerConfig:
    """Docker settings with defaults."""
    return DockerConfig()


@pytest.fixture
def mock_api() -> MagicMock:
    """Mock of docker.APIClient.

    The create_* config helpers echo their arguments back so tests can assert
    on what was requested.
    """
    api = MagicMock()
    api.containers.return_value = []
    api.networks.return_value = []
    api.create_network.return_value = {"Id": "net123"}
    api.create_container.return_value = {"Id": "abc123def456789"}
    api.inspect_image.return_value = {"Id": "sha256:img"}
    api.create_host_config.side_effect = lambda **kwargs: kwargs
    api.create_endpoint_config.side_effect = lambda **kwargs: kwargs
    api.create_networking_config.side_effect = lambda endpoints: endpoints
    api.logs.return_value = iter([])
    api.exec_create.return_value = {"Id": "exec1"}
    api.exec_start.return_value = (b"", b"")
    api.exec_inspect.return_value = {"ExitCode": 0}
    return api


@pytest.fixture
def mock_docker_client(mock_api: MagicMock) -> MagicMock:
    """Mock of docker.DockerClient exposing ``mock_api`` as ``.api``."""
    client = MagicMock()
    client.api = mock_api
    return client


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """Temporary jj repository root."""
    root = tmp_path / "repo"
    (root / ".jj").mkdir(parents=True)
    return root


@pytest.fixture
def state_manager(repo_root: Path) -> StateManager:
    return StateManager(repo_root)
