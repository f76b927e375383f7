"""Workspace provisioning sequence.

add:    jj workspace add -> allocate ports -> provision -> inject -> register
forget: deprovision -> unregister -> jj workspace forget
cleanup: compare labeled namespaces with registered ones

Provisioning is not transactional. If a service fails, containers created
before it keep running and no registry entry is written; ``reconcile``
finds and removes them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from aether.backends.interface import Backend, ResourceHandle, ResourceStatus, ServiceSpec
from aether.backends.naming import ResourceNaming
from aether.errors import ConfigError, ContextInjectionError, StateError
from aether.logging_schema import LogEvent
from aether.project import AetherConfig
from aether.provisioner.context import ContextInjector
from aether.provisioner.ports import PortAllocator
from aether.provisioner.state import ResourceInfo, StateManager, WorkspaceState
from aether.vcs.jj import JjCommand

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 12


def short_id(container_id: str) -> str:
    return container_id[:SHORT_ID_LENGTH]


@dataclass
class ReconcileReport:
    """Containers labeled with a namespace that no workspace owns."""

    orphans: list[ResourceStatus] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dry_run: bool = True

    @property
    def status(self) -> str:
        if not self.orphans:
            return "clean"
        return "dry_run" if self.dry_run else "cleaned"


class Provisioner:
    """Wires port allocation, backend, context injection and the registry."""

    def __init__(
        self,
        backend: Backend,
        state: StateManager,
        naming: ResourceNaming | None = None,
        allocator: PortAllocator | None = None,
        injector: ContextInjector | None = None,
    ) -> None:
        self._backend = backend
        self._state = state
        self._naming = naming or ResourceNaming()
        self._allocator = allocator or PortAllocator()
        self._injector = injector or ContextInjector()
        self._issued: list[int] = []

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def state(self) -> StateManager:
        return self._state

    def _allocate(self, count: int) -> list[int]:
        ports = self._allocator.allocate(count)
        self._issued.extend(ports)
        return ports

    def _reallocate(self, spec: ServiceSpec) -> ServiceSpec:
        """Give a spec fresh external ports after a publish conflict."""
        internal_ports = list(spec.port_mappings)
        fresh = self._allocate(len(internal_ports))
        return spec.with_port_mappings(dict(zip(internal_ports, fresh)))

    def build_specs(self, config: AetherConfig) -> list[ServiceSpec]:
        """ServiceSpecs in dependency order, one external port per internal port."""
        specs = []
        ports = iter(self._allocate(config.total_ports))
        for name in config.service_order():
            service = config.services[name]
            mappings = {internal: next(ports) for internal in service.ports}
            specs.append(service.to_spec(name, mappings))
        return specs

    def inject(self, config: AetherConfig, destination: Path, handles: list[ResourceHandle]) -> Path | None:
        """Render the injection template into the workspace, if configured."""
        if config.injection is None:
            return None

        resources = {handle.service_name: handle for handle in handles}
        rendered = self._injector.render(config.injection.template, resources)
        target = destination / config.injection.file
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(rendered)
        except OSError as e:
            raise ContextInjectionError(f"Failed to write {target}: {e}") from e

        logger.info(
            "Injected workspace context",
            extra={"event": LogEvent.CONTEXT_INJECTED, "file": str(target)},
        )
        return target

    async def add_workspace(
        self,
        config: AetherConfig,
        destination: Path,
        revision: str | None = None,
    ) -> WorkspaceState:
        """Create a jj workspace and provision its services."""
        name = destination.name
        if not name or name in (".", ".."):
            raise ConfigError(f"Invalid destination: {destination}")

        namespace = self._naming.namespace(name)
        try:
            specs = self.build_specs(config)
            JjCommand.workspace_add(str(destination), revision).execute()

            handles = await self._backend.provision(namespace, specs, reallocate=self._reallocate)
            logger.info(
                "Provisioned workspace",
                extra={
                    "event": LogEvent.WORKSPACE_PROVISIONED,
                    "workspace": name,
                    "namespace": namespace,
                    "services": [h.service_name for h in handles],
                },
            )

            self.inject(config, destination, handles)

            state = WorkspaceState(
                name=name,
                path=str(destination.resolve()),
                namespace=namespace,
                backend_type=self._backend.backend_type,
                resources=[ResourceInfo.from_handle(h) for h in handles],
            )
            self._state.register(state)
        finally:
            self._allocator.release(self._issued)
            self._issued = []

        return state

    async def forget_workspace(self, name: str) -> int:
        """Tear down a workspace's services and forget it in jj.

        Returns:
            Number of resources the registry recorded for the workspace
        """
        state = self._state.get(name)
        removed = 0
        if state is not None:
            await self._backend.deprovision(state.namespace)
            self._state.unregister(name)
            removed = len(state.resources)
        else:
            logger.warning(
                "Workspace not found in state, continuing with jj",
                extra={"event": LogEvent.WORKSPACE_NOT_REGISTERED, "workspace": name},
            )

        JjCommand.workspace_forget(name).execute()
        return removed

    def current_workspace(self, cwd: Path) -> WorkspaceState:
        """Registry entry for the workspace the process runs in."""
        name = cwd.resolve().name
        state = self._state.get(name)
        if state is None:
            raise StateError(
                f"Workspace '{name}' not found. Are you in an Aether-managed workspace?"
            )
        return state

    async def reconcile(self, force: bool = False) -> ReconcileReport:
        """Find managed containers whose namespace is not registered.

        Args:
            force: Remove the orphans instead of only reporting them
        """
        registered = {ws.namespace for ws in self._state.list()}
        report = ReconcileReport(dry_run=not force)

        for resource in await self._backend.list_managed():
            if resource.namespace and resource.namespace not in registered:
                report.orphans.append(resource)
                logger.info(
                    "Found orphaned container",
                    extra={
                        "event": LogEvent.ORPHAN_FOUND,
                        "container_id": short_id(resource.container_id),
                        "namespace": resource.namespace,
                        "service": resource.service_name,
                    },
                )

        if force:
            for resource in report.orphans:
                await self._backend.remove(resource.container_id)
                report.removed.append(short_id(resource.container_id))
                logger.info(
                    "Removed orphaned container",
                    extra={
                        "event": LogEvent.ORPHAN_REMOVED,
                        "container_id": short_id(resource.container_id),
                    },
                )

        return report
