"""Unit tests for DockerBackend."""

from unittest.mock import MagicMock, call, patch

import pytest
from docker.errors import APIError, DockerException, NotFound

from aether.backends import DockerBackend, ServiceSpec, create_backend
from aether.backends.naming import ResourceNaming
from aether.config import AetherSettings, DockerConfig
from aether.errors import BackendError, ErrorCode, ServiceNotFoundError
from aether.project import DockerBackendConfig

PORT_TAKEN = APIError(
    "500 Server Error",
    explanation="Bind for 0.0.0.0:32891 failed: port is already allocated",
)


def _container(
    container_id: str,
    service: str | None = "postgres",
    namespace: str = "aether-ws1",
    state: str | None = "running",
    created: int = 100,
    ports: list[dict] | None = None,
) -> dict:
    labels = {
        "aether.managed": "true",
        "aether.workspace": namespace,
        "aether.namespace": namespace,
    }
    if service is not None:
        labels["aether.service"] = service
    return {
        "Id": container_id,
        "Labels": labels,
        "State": state,
        "Created": created,
        "Ports": ports or [],
    }


@pytest.fixture
def backend(
    mock_docker_client: MagicMock,
    docker_config: DockerConfig,
    naming: ResourceNaming,
) -> DockerBackend:
    return DockerBackend(config=docker_config, naming=naming, client=mock_docker_client)


@pytest.fixture
def postgres() -> ServiceSpec:
    return ServiceSpec(
        name="postgres",
        image="postgres:15",
        ports=(5432,),
        port_mappings={5432: 32891},
        env={"POSTGRES_PASSWORD": "dev"},
    )


class TestProvision:
    """Tests for network and container creation."""

    async def test_creates_network_and_container(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        handles = await backend.provision("aether-ws1", [postgres])

        mock_api.create_network.assert_called_once_with(
            "aether-ws1-network",
            driver="bridge",
            labels={"aether.managed": "true", "aether.namespace": "aether-ws1"},
        )

        kwargs = mock_api.create_container.call_args.kwargs
        assert kwargs["name"] == "aether-ws1-postgres"
        assert kwargs["image"] == "postgres:15"
        assert kwargs["environment"] == {"POSTGRES_PASSWORD": "dev"}
        assert kwargs["labels"] == {
            "aether.managed": "true",
            "aether.workspace": "aether-ws1",
            "aether.namespace": "aether-ws1",
            "aether.service": "postgres",
        }
        assert kwargs["ports"] == [5432]
        assert kwargs["host_config"]["port_bindings"] == {5432: ("0.0.0.0", 32891)}
        assert kwargs["host_config"]["network_mode"] == "aether-ws1-network"
        # Reachable by service name on the namespace network
        assert kwargs["networking_config"] == {"aether-ws1-network": {"aliases": ["postgres"]}}
        assert "command" not in kwargs

        mock_api.start.assert_called_once_with("abc123def456789")
        assert len(handles) == 1
        assert handles[0].service_name == "postgres"
        assert handles[0].container_id == "abc123def456789"
        assert handles[0].image == "postgres:15"
        assert handles[0].port_mappings == {5432: 32891}

    async def test_reuses_existing_network(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.networks.return_value = [{"Name": "aether-ws1-network"}]

        await backend.provision("aether-ws1", [postgres])

        mock_api.create_network.assert_not_called()

    async def test_network_name_must_match_exactly(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        """The engine's name filter is a substring match."""
        mock_api.networks.return_value = [{"Name": "aether-ws1-network-old"}]

        await backend.provision("aether-ws1", [postgres])

        mock_api.create_network.assert_called_once()

    async def test_resource_limits(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        spec = ServiceSpec(
            name="redis",
            image="redis:7",
            cpu_limit=1.5,
            cpu_reservation=0.5,
            memory_limit=512 * 1024**2,
            memory_reservation=256 * 1024**2,
            volumes=("data:/data",),
            command=("redis-server", "--appendonly", "yes"),
        )

        await backend.provision("aether-ws1", [spec])

        kwargs = mock_api.create_container.call_args.kwargs
        host_config = kwargs["host_config"]
        assert host_config["cpu_quota"] == 150_000
        assert host_config["cpu_period"] == 100_000
        assert host_config["cpu_shares"] == 512
        assert host_config["mem_limit"] == 512 * 1024**2
        assert host_config["mem_reservation"] == 256 * 1024**2
        assert host_config["binds"] == ["data:/data"]
        assert kwargs["command"] == ["redis-server", "--appendonly", "yes"]

    async def test_no_limits_when_unset(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        await backend.provision("aether-ws1", [postgres])

        host_config = mock_api.create_container.call_args.kwargs["host_config"]
        for key in ("cpu_quota", "cpu_period", "cpu_shares", "mem_limit", "mem_reservation"):
            assert key not in host_config

    async def test_services_created_in_order(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        redis = ServiceSpec(name="redis", image="redis:7")
        mock_api.create_container.side_effect = [{"Id": "pg"}, {"Id": "rd"}]

        handles = await backend.provision("aether-ws1", [postgres, redis])

        assert [h.service_name for h in handles] == ["postgres", "redis"]
        assert mock_api.start.call_args_list == [call("pg"), call("rd")]

    async def test_pulls_missing_image(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.inspect_image.side_effect = NotFound("No such image")

        await backend.provision("aether-ws1", [postgres])

        mock_api.pull.assert_called_once_with("postgres", tag="15")

    async def test_failure_stops_remaining_services(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        """Earlier containers are not rolled back."""
        redis = ServiceSpec(name="redis", image="redis:7")
        mock_api.create_container.side_effect = [{"Id": "pg"}, APIError("boom")]

        with pytest.raises(BackendError, match="Failed to create container"):
            await backend.provision("aether-ws1", [postgres, redis])

        mock_api.start.assert_called_once_with("pg")
        mock_api.remove_container.assert_not_called()


class TestPortConflict:
    """Tests for recreating a container whose published port was taken."""

    async def test_retries_with_reallocated_ports(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.create_container.side_effect = [{"Id": "first"}, {"Id": "second"}]
        mock_api.start.side_effect = [PORT_TAKEN, None]
        reallocate = MagicMock(side_effect=lambda spec: spec.with_port_mappings({5432: 40000}))

        handles = await backend.provision("aether-ws1", [postgres], reallocate=reallocate)

        reallocate.assert_called_once()
        mock_api.remove_container.assert_called_once_with("first", force=True)
        second = mock_api.create_container.call_args_list[1].kwargs
        assert second["host_config"]["port_bindings"] == {5432: ("0.0.0.0", 40000)}
        assert handles[0].container_id == "second"
        assert handles[0].port_mappings == {5432: 40000}

    async def test_gives_up_after_configured_attempts(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.start.side_effect = PORT_TAKEN
        reallocate = MagicMock(side_effect=lambda spec: spec)

        with pytest.raises(BackendError, match="Failed to start container"):
            await backend.provision("aether-ws1", [postgres], reallocate=reallocate)

        assert mock_api.create_container.call_count == 3
        assert reallocate.call_count == 2

    async def test_no_retry_without_reallocator(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.start.side_effect = PORT_TAKEN

        with pytest.raises(BackendError):
            await backend.provision("aether-ws1", [postgres])

        assert mock_api.create_container.call_count == 1

    async def test_other_start_errors_not_retried(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
        postgres: ServiceSpec,
    ) -> None:
        mock_api.start.side_effect = APIError("500 Server Error", explanation="OCI runtime error")
        reallocate = MagicMock()

        with pytest.raises(BackendError):
            await backend.provision("aether-ws1", [postgres], reallocate=reallocate)

        reallocate.assert_not_called()


class TestDeprovision:
    """Tests for namespace teardown."""

    async def test_removes_all_containers_then_network(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [
            _container("pg", "postgres"),
            _container("rd", "redis"),
        ]

        await backend.deprovision("aether-ws1")

        mock_api.containers.assert_called_once_with(
            all=True, filters={"label": ["aether.workspace=aether-ws1"]}
        )
        assert mock_api.remove_container.call_args_list == [
            call("pg", force=True),
            call("rd", force=True),
        ]
        mock_api.remove_network.assert_called_once_with("aether-ws1-network")

    async def test_network_removal_failure_ignored(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.remove_network.side_effect = NotFound("network not found")

        await backend.deprovision("aether-ws1")

    async def test_container_removal_failure_propagates(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]
        mock_api.remove_container.side_effect = APIError("removal in progress")

        with pytest.raises(BackendError, match="Failed to remove container"):
            await backend.deprovision("aether-ws1")


class TestStatus:
    """Tests for status and list_managed."""

    async def test_reports_state_and_ports(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [
            _container(
                "pg",
                ports=[
                    {"PrivatePort": 5432, "PublicPort": 32891, "Type": "tcp", "IP": "0.0.0.0"},
                    {"PrivatePort": 9999, "Type": "tcp"},
                ],
            ),
        ]

        statuses = await backend.status("aether-ws1")

        assert len(statuses) == 1
        assert statuses[0].service_name == "postgres"
        assert statuses[0].container_id == "pg"
        assert statuses[0].status == "running"
        assert statuses[0].port_mappings == {5432: 32891}
        assert statuses[0].namespace == "aether-ws1"

    async def test_missing_service_label_is_unknown(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("x", service=None, state=None)]

        statuses = await backend.status("aether-ws1")

        assert statuses[0].service_name == "unknown"
        assert statuses[0].status == "unknown"

    async def test_list_managed_uses_marker_label(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [
            _container("a", namespace="aether-ws1"),
            _container("b", namespace="aether-ws2"),
        ]

        resources = await backend.list_managed()

        mock_api.containers.assert_called_once_with(
            all=True, filters={"label": ["aether.managed=true"]}
        )
        assert [r.namespace for r in resources] == ["aether-ws1", "aether-ws2"]

    async def test_list_failure_is_backend_error(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.side_effect = APIError("daemon unavailable")

        with pytest.raises(BackendError):
            await backend.status("aether-ws1")


class TestServiceOperations:
    """Tests for operations resolving a single service container."""

    async def test_not_found(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = []

        with pytest.raises(ServiceNotFoundError) as exc_info:
            await backend.restart("aether-ws1", "redis")

        assert exc_info.value.code == ErrorCode.SERVICE_NOT_FOUND
        assert exc_info.value.message == "Service 'redis' not found in namespace 'aether-ws1'"
        mock_api.restart.assert_not_called()

    async def test_lookup_filters_on_namespace_and_service(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]

        await backend.start("aether-ws1", "postgres")

        mock_api.containers.assert_called_once_with(
            all=True,
            filters={"label": ["aether.workspace=aether-ws1", "aether.service=postgres"]},
        )
        mock_api.start.assert_called_once_with("pg")

    async def test_multiple_matches_first_created_wins(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [
            _container("newer", created=200),
            _container("older", created=100),
        ]

        await backend.stop("aether-ws1", "postgres")

        mock_api.stop.assert_called_once_with("older", timeout=10)

    async def test_stop_and_restart_grace_period(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]

        await backend.stop("aether-ws1", "postgres")
        await backend.restart("aether-ws1", "postgres")

        mock_api.stop.assert_called_once_with("pg", timeout=10)
        mock_api.restart.assert_called_once_with("pg", timeout=10)

    async def test_logs_with_tail(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]
        mock_api.logs.return_value = iter([b"ready\n", b"listening\n"])

        text = await backend.logs("aether-ws1", "postgres", tail=10)

        assert text == "ready\nlistening\n"
        kwargs = mock_api.logs.call_args.kwargs
        assert kwargs["tail"] == 10
        assert kwargs["stdout"] is True
        assert kwargs["stderr"] is True
        assert kwargs["follow"] is False

    async def test_logs_unbounded(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]

        text = await backend.logs("aether-ws1", "postgres")

        assert text == ""
        assert mock_api.logs.call_args.kwargs["tail"] == "all"

    async def test_logs_invalid_utf8_replaced(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]
        mock_api.logs.return_value = iter([b"ok \xff\n"])

        text = await backend.logs("aether-ws1", "postgres")

        assert text == "ok \ufffd\n"

    async def test_run_captures_output_and_exit_code(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]
        mock_api.exec_start.return_value = (b"1\n", b"warning\n")
        mock_api.exec_inspect.return_value = {"ExitCode": 3}

        result = await backend.run("aether-ws1", "postgres", ["psql", "-c", "select 1"])

        mock_api.exec_create.assert_called_once_with(
            "pg", ["psql", "-c", "select 1"], stdout=True, stderr=True
        )
        mock_api.exec_start.assert_called_once_with("exec1", demux=True)
        assert result.exit_code == 3
        assert result.stdout == "1\n"
        assert result.stderr == "warning\n"

    async def test_run_without_reported_exit_code(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.containers.return_value = [_container("pg")]
        mock_api.exec_start.return_value = (b"out", None)
        mock_api.exec_inspect.return_value = {"ExitCode": None}

        result = await backend.run("aether-ws1", "postgres", ["true"])

        assert result.exit_code == -1
        assert result.stdout == "out"
        assert result.stderr == ""

    async def test_remove_missing_container_ignored(
        self,
        backend: DockerBackend,
        mock_api: MagicMock,
    ) -> None:
        mock_api.remove_container.side_effect = NotFound("No such container")

        await backend.remove("gone")


class TestConnection:
    """Tests for client construction."""

    async def test_connection_failure(self, docker_config: DockerConfig) -> None:
        backend = DockerBackend(config=docker_config)

        with patch(
            "aether.backends.docker.docker.from_env",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(BackendError, match="Failed to connect to Docker"):
                await backend.status("aether-ws1")

    def test_backend_type(self, backend: DockerBackend) -> None:
        assert backend.backend_type == "docker"

    def test_create_backend_socket_override(self) -> None:
        backend = create_backend(
            DockerBackendConfig(type="docker", socket="/var/run/docker.sock"),
            AetherSettings(),
        )

        assert isinstance(backend, DockerBackend)
        assert backend._config.host == "unix:///var/run/docker.sock"

    def test_create_backend_defaults(self) -> None:
        backend = create_backend(None, AetherSettings())

        assert backend._config.host is None
