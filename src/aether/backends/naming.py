"""Resource naming utilities for workspace namespaces."""

from aether.config import StateConfig


class ResourceNaming:
    """Centralized naming and labeling conventions for engine resources.

    For workspace ``feature-x`` and service ``postgres``:
        namespace       aether-feature-x
        network         aether-feature-x-network
        container       aether-feature-x-postgres
    """

    def __init__(self, config: StateConfig | None = None) -> None:
        config = config or StateConfig()
        self._prefix = config.namespace_prefix
        self._label_prefix = config.label_prefix

    @property
    def label_managed(self) -> str:
        return f"{self._label_prefix}managed"

    @property
    def label_workspace(self) -> str:
        return f"{self._label_prefix}workspace"

    @property
    def label_namespace(self) -> str:
        return f"{self._label_prefix}namespace"

    @property
    def label_service(self) -> str:
        return f"{self._label_prefix}service"

    def namespace(self, workspace_name: str) -> str:
        return f"{self._prefix}{workspace_name}"

    def network_name(self, namespace: str) -> str:
        return f"{namespace}-network"

    def container_name(self, namespace: str, service: str) -> str:
        return f"{namespace}-{service}"

    def container_labels(self, namespace: str, service: str) -> dict[str, str]:
        """Discovery labels set on every container of a namespace."""
        return {
            self.label_managed: "true",
            self.label_workspace: namespace,
            self.label_namespace: namespace,
            self.label_service: service,
        }

    def network_labels(self, namespace: str) -> dict[str, str]:
        return {
            self.label_managed: "true",
            self.label_namespace: namespace,
        }

    def namespace_filter(self, namespace: str) -> list[str]:
        return [f"{self.label_workspace}={namespace}"]

    def service_filter(self, namespace: str, service: str) -> list[str]:
        return [
            f"{self.label_workspace}={namespace}",
            f"{self.label_service}={service}",
        ]

    def managed_filter(self) -> list[str]:
        return [f"{self.label_managed}=true"]
