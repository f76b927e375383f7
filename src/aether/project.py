"""Project configuration (aether.toml) and repository discovery.

Example aether.toml:

    [backend]
    type = "docker"

    [services.postgres]
    image = "postgres:15"
    ports = ["5432"]
    env = { POSTGRES_PASSWORD = "dev" }
    resources = { cpu_limit = 1.5, memory_limit = "512m" }

    [injection]
    file = ".env"
    template = "DB_PORT={{ services.postgres.ports.5432 }}"
"""

import logging
import re
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from aether.backends.interface import ServiceSpec
from aether.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "aether.toml"
REPO_MARKER = ".jj"

_MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}
_MEMORY_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$")


def parse_memory(value: str) -> int:
    """Parse a memory string such as ``512m`` or ``1gb`` into bytes.

    A bare number is taken as bytes.
    """
    match = _MEMORY_RE.match(value.strip().lower())
    if not match:
        raise ConfigError(f"Invalid memory value: {value}")

    number, unit = match.groups()
    multiplier = _MEMORY_UNITS.get(unit or "b")
    if multiplier is None:
        raise ConfigError(f"Invalid memory unit: {unit}")
    return int(float(number) * multiplier)


class DockerBackendConfig(BaseModel):
    """[backend] table for the docker backend."""

    type: Literal["docker"] = "docker"
    socket: str | None = None


class ResourceLimits(BaseModel):
    """Per-service CPU (fractional cores) and memory (size strings) limits."""

    model_config = {"extra": "forbid"}

    cpu_limit: float | None = Field(default=None, gt=0)
    cpu_reservation: float | None = Field(default=None, gt=0)
    memory_limit: str | None = None
    memory_reservation: str | None = None

    @field_validator("memory_limit", "memory_reservation")
    @classmethod
    def _check_memory(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                parse_memory(value)
            except ConfigError as e:
                raise ValueError(e.message) from None
        return value


class ServiceConfig(BaseModel):
    """[services.<name>] table."""

    model_config = {"extra": "forbid"}

    image: str
    ports: list[int] = []
    env: dict[str, str] = {}
    volumes: list[str] = []
    command: list[str] | None = None
    depends_on: list[str] = []
    resources: ResourceLimits | None = None

    @field_validator("ports", mode="before")
    @classmethod
    def _parse_ports(cls, value: list) -> list[int]:
        if not isinstance(value, list):
            raise ValueError("ports must be a list")
        ports = []
        for item in value:
            try:
                port = int(item)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid port: {item}") from None
            if not 0 < port < 65536:
                raise ValueError(f"Invalid port: {item}")
            ports.append(port)
        return ports

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: dict) -> dict[str, str]:
        result = {}
        for key, item in value.items():
            if isinstance(item, bool):
                result[key] = "true" if item else "false"
            else:
                result[key] = str(item)
        return result

    def to_spec(self, name: str, port_mappings: dict[int, int]) -> ServiceSpec:
        limits = self.resources or ResourceLimits()
        return ServiceSpec(
            name=name,
            image=self.image,
            ports=tuple(self.ports),
            port_mappings=dict(port_mappings),
            env=dict(self.env),
            volumes=tuple(self.volumes),
            command=tuple(self.command) if self.command is not None else None,
            depends_on=tuple(self.depends_on),
            cpu_limit=limits.cpu_limit,
            cpu_reservation=limits.cpu_reservation,
            memory_limit=parse_memory(limits.memory_limit) if limits.memory_limit else None,
            memory_reservation=(
                parse_memory(limits.memory_reservation) if limits.memory_reservation else None
            ),
        )


class InjectionConfig(BaseModel):
    """[injection] table: template rendered into a workspace file."""

    file: str
    template: str


class AetherConfig(BaseModel):
    """Root of aether.toml."""

    backend: DockerBackendConfig
    services: dict[str, ServiceConfig] = {}
    injection: InjectionConfig | None = None

    @model_validator(mode="after")
    def _check_dependencies(self) -> "AetherConfig":
        for name, service in self.services.items():
            for dependency in service.depends_on:
                if dependency not in self.services:
                    raise ValueError(
                        f"Service '{name}' depends on undeclared service '{dependency}'"
                    )
        try:
            self.service_order()
        except ConfigError as e:
            raise ValueError(e.message) from None
        return self

    @property
    def total_ports(self) -> int:
        return sum(len(s.ports) for s in self.services.values())

    def service_order(self) -> list[str]:
        """Service names with every dependency ahead of its dependents.

        Independent services keep their declaration order.
        """
        ordered: list[str] = []
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in ordered:
                return
            if name in visiting:
                raise ConfigError(f"Dependency cycle involving service '{name}'")
            visiting.add(name)
            for dependency in self.services[name].depends_on:
                visit(dependency)
            visiting.discard(name)
            ordered.append(name)

        for name in self.services:
            visit(name)
        return ordered


def find_repo_root(start: Path) -> Path:
    """Walk up from ``start`` until a directory containing ``.jj`` is found."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / REPO_MARKER).is_dir():
            return candidate
    raise ConfigError("Not in a jj repository")


def find_config(start: Path) -> Path:
    """Find aether.toml walking up from ``start``, stopping at the repo root."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        path = candidate / CONFIG_FILE_NAME
        if path.is_file():
            return path
        if (candidate / REPO_MARKER).is_dir():
            break
    raise ConfigError(f"{CONFIG_FILE_NAME} not found in repo")


def load_config(path: Path) -> AetherConfig:
    """Read and validate an aether.toml file."""
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config: {e}") from e

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse TOML: {e}") from e

    try:
        config = AetherConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e

    logger.debug("Loaded config %s with %d services", path, len(config.services))
    return config
