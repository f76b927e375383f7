"""Docker resource backend.

Manages namespace networks and service containers through the Docker Engine
API (docker SDK low-level client). The SDK is synchronous; every public
operation runs its engine calls in a worker thread.
"""

import asyncio
import logging
from typing import Any

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.utils import parse_repository_tag

from aether.backends.interface import (
    Backend,
    ExecResult,
    PortReallocator,
    ResourceHandle,
    ResourceStatus,
    ServiceSpec,
)
from aether.backends.naming import ResourceNaming
from aether.config import DockerConfig
from aether.errors import BackendError, ServiceNotFoundError
from aether.logging_schema import LogEvent

logger = logging.getLogger(__name__)

CPU_PERIOD = 100_000
CPU_SHARES_PER_CORE = 1024

_PORT_CONFLICT_MARKERS = ("port is already allocated", "address already in use")


def _is_port_conflict(exc: APIError) -> bool:
    text = str(exc.explanation or exc).lower()
    return any(marker in text for marker in _PORT_CONFLICT_MARKERS)


def _published_ports(container: dict) -> dict[int, int]:
    """Map private to public port from a container list entry."""
    mappings: dict[int, int] = {}
    for port in container.get("Ports") or []:
        public = port.get("PublicPort")
        if public:
            mappings[int(port["PrivatePort"])] = int(public)
    return mappings


class DockerBackend(Backend):
    """Backend using the local Docker engine."""

    def __init__(
        self,
        config: DockerConfig | None = None,
        naming: ResourceNaming | None = None,
        client: docker.DockerClient | None = None,
    ) -> None:
        """Initialize with optional settings and client.

        Args:
            config: Docker settings (host, grace period, publish interface).
            naming: Naming/label conventions.
            client: Pre-built client. If None, one is created on first use
                from config.host or the DOCKER_HOST environment.
        """
        self._config = config or DockerConfig()
        self._naming = naming or ResourceNaming()
        self._client = client

    @property
    def backend_type(self) -> str:
        return "docker"

    @property
    def api(self) -> Any:
        """Low-level API client, connecting on first access."""
        if self._client is None:
            try:
                if self._config.host:
                    self._client = docker.DockerClient(base_url=self._config.host)
                else:
                    self._client = docker.from_env()
            except DockerException as e:
                raise BackendError(f"Failed to connect to Docker: {e}") from e
        return self._client.api

    # =========================================================================
    # Lookup helpers
    # =========================================================================

    def _list_containers(self, labels: list[str]) -> list[dict]:
        try:
            return self.api.containers(all=True, filters={"label": labels})
        except DockerException as e:
            raise BackendError(f"Failed to list containers: {e}") from e

    def _find_container(self, namespace: str, service: str) -> str:
        """Resolve the container id for (namespace, service).

        Zero matches raise ServiceNotFoundError. With several matches the
        first-created container wins.
        """
        containers = self._list_containers(self._naming.service_filter(namespace, service))
        if not containers:
            raise ServiceNotFoundError(service, namespace)

        if len(containers) > 1:
            containers = sorted(containers, key=lambda c: c.get("Created", 0))
            logger.warning(
                "Multiple containers match service, using first created",
                extra={
                    "event": LogEvent.CONTAINER_AMBIGUOUS,
                    "namespace": namespace,
                    "service": service,
                    "count": len(containers),
                },
            )
        return containers[0]["Id"]

    def _to_status(self, container: dict) -> ResourceStatus:
        labels = container.get("Labels") or {}
        return ResourceStatus(
            service_name=labels.get(self._naming.label_service, "unknown"),
            container_id=container.get("Id", ""),
            status=container.get("State") or "unknown",
            port_mappings=_published_ports(container),
            namespace=labels.get(self._naming.label_namespace, ""),
        )

    # =========================================================================
    # Network
    # =========================================================================

    def _ensure_network_sync(self, namespace: str) -> str:
        """Create the namespace network unless one with that exact name exists."""
        network_name = self._naming.network_name(namespace)
        try:
            networks = self.api.networks(names=[network_name])
            # The engine's name filter is a substring match
            if any(n.get("Name") == network_name for n in networks):
                return network_name

            self.api.create_network(
                network_name,
                driver=self._config.network_driver,
                labels=self._naming.network_labels(namespace),
            )
        except DockerException as e:
            raise BackendError(f"Failed to create network: {e}") from e

        logger.info(
            "Created network",
            extra={"event": LogEvent.NETWORK_CREATED, "network": network_name},
        )
        return network_name

    def _remove_network_sync(self, namespace: str) -> None:
        network_name = self._naming.network_name(namespace)
        try:
            self.api.remove_network(network_name)
        except DockerException as e:
            logger.debug("Network removal skipped: %s (%s)", network_name, e)
            return
        logger.info(
            "Removed network",
            extra={"event": LogEvent.NETWORK_REMOVED, "network": network_name},
        )

    # =========================================================================
    # Provisioning
    # =========================================================================

    def _ensure_image_sync(self, image: str) -> None:
        """Pull the image unless it is present locally."""
        try:
            self.api.inspect_image(image)
            return
        except NotFound:
            pass
        except DockerException as e:
            raise BackendError(f"Failed to inspect image: {e}") from e

        repository, tag = parse_repository_tag(image)
        logger.info("Pulling image: %s", image)
        try:
            self.api.pull(repository, tag=tag or "latest")
        except DockerException as e:
            raise BackendError(f"Failed to pull image: {e}") from e

    def _create_kwargs(self, namespace: str, network_name: str, spec: ServiceSpec) -> dict:
        """Translate a ServiceSpec into create_container arguments."""
        api = self.api

        host_config_kwargs: dict[str, Any] = {
            "network_mode": network_name,
            "port_bindings": {
                internal: (self._config.host_ip, external)
                for internal, external in spec.port_mappings.items()
            },
        }
        if spec.volumes:
            host_config_kwargs["binds"] = list(spec.volumes)
        if spec.cpu_limit is not None:
            host_config_kwargs["cpu_quota"] = int(spec.cpu_limit * CPU_PERIOD)
            host_config_kwargs["cpu_period"] = CPU_PERIOD
        if spec.cpu_reservation is not None:
            host_config_kwargs["cpu_shares"] = int(spec.cpu_reservation * CPU_SHARES_PER_CORE)
        if spec.memory_limit is not None:
            host_config_kwargs["mem_limit"] = spec.memory_limit
        if spec.memory_reservation is not None:
            host_config_kwargs["mem_reservation"] = spec.memory_reservation

        exposed = sorted(set(spec.ports) | set(spec.port_mappings))

        kwargs: dict[str, Any] = {
            "image": spec.image,
            "name": self._naming.container_name(namespace, spec.name),
            "environment": dict(spec.env),
            "labels": self._naming.container_labels(namespace, spec.name),
            "ports": exposed,
            "host_config": api.create_host_config(**host_config_kwargs),
            "networking_config": api.create_networking_config(
                {network_name: api.create_endpoint_config(aliases=[spec.name])}
            ),
        }
        if spec.command is not None:
            kwargs["command"] = list(spec.command)
        return kwargs

    def _create_and_start_sync(
        self,
        namespace: str,
        network_name: str,
        spec: ServiceSpec,
        reallocate: PortReallocator | None,
    ) -> ResourceHandle:
        container_name = self._naming.container_name(namespace, spec.name)
        self._ensure_image_sync(spec.image)
        attempts = 0

        while True:
            try:
                created = self.api.create_container(
                    **self._create_kwargs(namespace, network_name, spec)
                )
            except DockerException as e:
                raise BackendError(f"Failed to create container: {e}") from e
            container_id = created["Id"]
            logger.info(
                "Created container",
                extra={
                    "event": LogEvent.CONTAINER_CREATED,
                    "container": container_name,
                    "image": spec.image,
                },
            )

            try:
                self.api.start(container_id)
            except APIError as e:
                attempts += 1
                if (
                    reallocate is None
                    or not _is_port_conflict(e)
                    or attempts >= self._config.port_conflict_retries
                ):
                    raise BackendError(f"Failed to start container: {e}") from e

                logger.warning(
                    "Published port taken, retrying with new ports",
                    extra={
                        "event": LogEvent.PORT_CONFLICT,
                        "container": container_name,
                        "ports": spec.port_mappings,
                        "attempt": attempts,
                    },
                )
                try:
                    self.api.remove_container(container_id, force=True)
                except DockerException as remove_error:
                    raise BackendError(
                        f"Failed to remove container: {remove_error}"
                    ) from remove_error
                spec = reallocate(spec)
                continue
            except DockerException as e:
                raise BackendError(f"Failed to start container: {e}") from e

            logger.info(
                "Started container",
                extra={"event": LogEvent.CONTAINER_STARTED, "container": container_name},
            )
            return ResourceHandle(
                service_name=spec.name,
                container_id=container_id,
                image=spec.image,
                port_mappings=dict(spec.port_mappings),
            )

    def _provision_sync(
        self,
        namespace: str,
        services: list[ServiceSpec],
        reallocate: PortReallocator | None,
    ) -> list[ResourceHandle]:
        network_name = self._ensure_network_sync(namespace)
        return [
            self._create_and_start_sync(namespace, network_name, spec, reallocate)
            for spec in services
        ]

    async def provision(
        self,
        namespace: str,
        services: list[ServiceSpec],
        reallocate: PortReallocator | None = None,
    ) -> list[ResourceHandle]:
        return await asyncio.to_thread(self._provision_sync, namespace, services, reallocate)

    def _deprovision_sync(self, namespace: str) -> None:
        for container in self._list_containers(self._naming.namespace_filter(namespace)):
            self._remove_sync(container["Id"])
        self._remove_network_sync(namespace)

    async def deprovision(self, namespace: str) -> None:
        await asyncio.to_thread(self._deprovision_sync, namespace)

    # =========================================================================
    # Observation
    # =========================================================================

    def _status_sync(self, namespace: str) -> list[ResourceStatus]:
        containers = self._list_containers(self._naming.namespace_filter(namespace))
        return [self._to_status(c) for c in containers]

    async def status(self, namespace: str) -> list[ResourceStatus]:
        return await asyncio.to_thread(self._status_sync, namespace)

    def _list_managed_sync(self) -> list[ResourceStatus]:
        containers = self._list_containers(self._naming.managed_filter())
        return [self._to_status(c) for c in containers]

    async def list_managed(self) -> list[ResourceStatus]:
        return await asyncio.to_thread(self._list_managed_sync)

    def _logs_sync(self, namespace: str, service: str, tail: int | None) -> str:
        container_id = self._find_container(namespace, service)
        try:
            stream = self.api.logs(
                container_id,
                stdout=True,
                stderr=True,
                stream=True,
                follow=False,
                tail=tail if tail is not None else "all",
            )
            output = b"".join(stream)
        except DockerException as e:
            raise BackendError(f"Failed to read logs: {e}") from e
        return output.decode("utf-8", errors="replace")

    async def logs(self, namespace: str, service: str, tail: int | None = None) -> str:
        return await asyncio.to_thread(self._logs_sync, namespace, service, tail)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _restart_sync(self, namespace: str, service: str) -> None:
        container_id = self._find_container(namespace, service)
        try:
            self.api.restart(container_id, timeout=self._config.stop_timeout)
        except DockerException as e:
            raise BackendError(f"Failed to restart container: {e}") from e
        logger.info(
            "Restarted container",
            extra={"event": LogEvent.CONTAINER_RESTARTED, "namespace": namespace, "service": service},
        )

    async def restart(self, namespace: str, service: str) -> None:
        await asyncio.to_thread(self._restart_sync, namespace, service)

    def _stop_sync(self, namespace: str, service: str) -> None:
        container_id = self._find_container(namespace, service)
        try:
            self.api.stop(container_id, timeout=self._config.stop_timeout)
        except DockerException as e:
            raise BackendError(f"Failed to stop container: {e}") from e
        logger.info(
            "Stopped container",
            extra={"event": LogEvent.CONTAINER_STOPPED, "namespace": namespace, "service": service},
        )

    async def stop(self, namespace: str, service: str) -> None:
        await asyncio.to_thread(self._stop_sync, namespace, service)

    def _start_sync(self, namespace: str, service: str) -> None:
        container_id = self._find_container(namespace, service)
        try:
            self.api.start(container_id)
        except DockerException as e:
            raise BackendError(f"Failed to start container: {e}") from e
        logger.info(
            "Started container",
            extra={"event": LogEvent.CONTAINER_STARTED, "namespace": namespace, "service": service},
        )

    async def start(self, namespace: str, service: str) -> None:
        await asyncio.to_thread(self._start_sync, namespace, service)

    def _remove_sync(self, container_id: str) -> None:
        try:
            self.api.remove_container(container_id, force=True)
        except NotFound:
            logger.debug("Container not found: %s", container_id)
            return
        except DockerException as e:
            raise BackendError(f"Failed to remove container: {e}") from e
        logger.info(
            "Removed container",
            extra={"event": LogEvent.CONTAINER_REMOVED, "container_id": container_id},
        )

    async def remove(self, container_id: str) -> None:
        await asyncio.to_thread(self._remove_sync, container_id)

    # =========================================================================
    # Exec
    # =========================================================================

    def _run_sync(self, namespace: str, service: str, command: list[str]) -> ExecResult:
        container_id = self._find_container(namespace, service)
        try:
            exec_id = self.api.exec_create(
                container_id, command, stdout=True, stderr=True
            )["Id"]
        except DockerException as e:
            raise BackendError(f"Failed to create exec session: {e}") from e

        try:
            stdout, stderr = self.api.exec_start(exec_id, demux=True)
        except DockerException as e:
            raise BackendError(f"Failed to read command output: {e}") from e

        try:
            inspected = self.api.exec_inspect(exec_id)
        except DockerException as e:
            raise BackendError(f"Failed to inspect exec session: {e}") from e

        exit_code = inspected.get("ExitCode")
        result = ExecResult(
            exit_code=exit_code if exit_code is not None else -1,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
        )
        logger.info(
            "Exec completed",
            extra={
                "event": LogEvent.EXEC_COMPLETED,
                "namespace": namespace,
                "service": service,
                "exit_code": result.exit_code,
            },
        )
        return result

    async def run(self, namespace: str, service: str, command: list[str]) -> ExecResult:
        return await asyncio.to_thread(self._run_sync, namespace, service, command)
