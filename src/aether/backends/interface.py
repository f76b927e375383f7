"""Resource backend interface for per-workspace service containers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class ServiceSpec:
    """Declarative description of one service to provision.

    ``port_mappings`` maps internal container port to the external host port
    already chosen by the port allocator.
    """

    name: str
    image: str
    ports: tuple[int, ...] = ()
    port_mappings: dict[int, int] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    volumes: tuple[str, ...] = ()
    command: tuple[str, ...] | None = None
    depends_on: tuple[str, ...] = ()
    cpu_limit: float | None = None
    cpu_reservation: float | None = None
    memory_limit: int | None = None
    memory_reservation: int | None = None

    def with_port_mappings(self, port_mappings: dict[int, int]) -> "ServiceSpec":
        return replace(self, port_mappings=dict(port_mappings))


@dataclass
class ResourceHandle:
    """A successfully provisioned service."""

    service_name: str
    container_id: str
    image: str
    port_mappings: dict[int, int] = field(default_factory=dict)


@dataclass
class ResourceStatus:
    """Point-in-time observation of one labeled container."""

    service_name: str
    container_id: str
    status: str
    port_mappings: dict[int, int] = field(default_factory=dict)
    namespace: str = ""


@dataclass
class ExecResult:
    """Outcome of a one-shot command run inside a service container.

    ``exit_code`` is -1 when the engine did not report one.
    """

    exit_code: int
    stdout: str
    stderr: str


# Called with a spec whose published ports conflicted; returns the spec with
# freshly allocated external ports.
PortReallocator = Callable[[ServiceSpec], ServiceSpec]


class Backend(ABC):
    """Interface for provisioning groups of containers scoped to a namespace.

    Implementations: DockerBackend
    """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Tag recorded in the registry for workspaces provisioned here."""
        ...

    @abstractmethod
    async def provision(
        self,
        namespace: str,
        services: list[ServiceSpec],
        reallocate: PortReallocator | None = None,
    ) -> list[ResourceHandle]:
        """Create the namespace network and one started container per service.

        Services are created sequentially in the given order. The first
        failing engine call aborts the remaining services; containers already
        created are left in place.

        Args:
            namespace: Namespace scoping the network and container labels
            services: Service specs with resolved port mappings
            reallocate: Optional hook used to retry a service whose published
                port was taken between allocation and publish

        Returns:
            One handle per service, in provisioning order
        """
        ...

    @abstractmethod
    async def deprovision(self, namespace: str) -> None:
        """Force-remove every container of the namespace, then its network."""
        ...

    @abstractmethod
    async def status(self, namespace: str) -> list[ResourceStatus]:
        """Observe all containers of the namespace."""
        ...

    @abstractmethod
    async def logs(self, namespace: str, service: str, tail: int | None = None) -> str:
        """Combined stdout and stderr of a service; ``tail=None`` is unbounded."""
        ...

    @abstractmethod
    async def restart(self, namespace: str, service: str) -> None:
        ...

    @abstractmethod
    async def stop(self, namespace: str, service: str) -> None:
        ...

    @abstractmethod
    async def start(self, namespace: str, service: str) -> None:
        ...

    @abstractmethod
    async def run(self, namespace: str, service: str, command: list[str]) -> ExecResult:
        """Run a command to completion inside a service container."""
        ...

    @abstractmethod
    async def list_managed(self) -> list[ResourceStatus]:
        """Observe every container carrying the managed marker, any namespace."""
        ...

    @abstractmethod
    async def remove(self, container_id: str) -> None:
        """Force-remove one container by id."""
        ...
