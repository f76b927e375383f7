"""Render workspace configuration from provisioned resources.

Templates are Jinja2 with strict undefined handling. The render context is:

    {
        "services": {
            "<name>": {
                "ports": {"<internal>": <external>, ...},
                "container_id": "<id>",
            },
        },
    }

so ``{{ services.postgres.ports.5432 }}`` yields the host port published for
postgres' internal port 5432.
"""

from collections.abc import Mapping
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError

from aether.backends.interface import ResourceHandle
from aether.errors import ContextInjectionError


class _ContextEnvironment(Environment):
    """Environment resolving numeric path segments against string keys.

    ``ports.5432`` is parsed by Jinja as an integer subscript; port maps are
    keyed by strings. Dotted names prefer map keys over attributes so a
    service called ``items`` is not shadowed by ``dict.items``.
    """

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(argument, int) and isinstance(obj, Mapping) and argument not in obj:
            key = str(argument)
            if key in obj:
                return obj[key]
        return super().getitem(obj, argument)

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping) and attribute in obj:
            return obj[attribute]
        return super().getattr(obj, attribute)


def build_context(resources: Mapping[str, ResourceHandle]) -> dict[str, Any]:
    services = {
        name: {
            "ports": {
                str(internal): external
                for internal, external in resource.port_mappings.items()
            },
            "container_id": resource.container_id,
        }
        for name, resource in resources.items()
    }
    return {"services": services}


class ContextInjector:
    """Renders injection templates against resource handles."""

    def __init__(self) -> None:
        self._env = _ContextEnvironment(
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, template: str, resources: Mapping[str, ResourceHandle]) -> str:
        """Render ``template``; undefined paths and syntax errors raise."""
        try:
            return self._env.from_string(template).render(build_context(resources))
        except TemplateError as e:
            raise ContextInjectionError(str(e)) from e
