"""Tool catalog and policy filtering.

The catalog holds the host's tool specifications. Before a run the engine
narrows it three ways, in order: by what the active provider can handle, by
an optional allow-list, and by disabled categories (terminal tools unless the
terminal policy is on).
"""

from __future__ import annotations

import logging
from typing import Callable, Collection, Iterable, Iterator, Mapping, Sequence, Any

from .types import ToolCategory, ToolSpec

__all__ = [
    "ToolCatalog",
    "DuplicateToolError",
    "ToolNotFoundError",
    "filter_tool_specs",
]

LOGGER = logging.getLogger(__name__)


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not in the catalog."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class ToolCatalog:
    """Ordered collection of tool specifications."""

    def __init__(self, specs: Iterable[ToolSpec | Mapping[str, Any]] = ()) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec | Mapping[str, Any], *, allow_override: bool = False) -> ToolSpec:
        """Add a tool specification.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        resolved = ToolSpec.from_definition(spec)
        if resolved.name in self._specs and not allow_override:
            raise DuplicateToolError(resolved.name)
        self._specs[resolved.name] = resolved
        LOGGER.debug("Registered tool: %s (%s)", resolved.name, resolved.category)
        return resolved

    def unregister(self, name: str) -> None:
        if name not in self._specs:
            raise ToolNotFoundError(name)
        del self._specs[name]

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def names(self) -> list[str]:
        return list(self._specs)

    def specs(self) -> tuple[ToolSpec, ...]:
        return tuple(self._specs.values())

    def by_category(self, category: str) -> tuple[ToolSpec, ...]:
        return tuple(spec for spec in self._specs.values() if spec.category == category)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


def filter_tool_specs(
    tools: Iterable[ToolSpec | Mapping[str, Any]],
    *,
    capability_filter: Callable[[Sequence[ToolSpec]], Sequence[ToolSpec]] | None = None,
    allowed_names: Collection[str] | None = None,
    disabled_categories: Collection[str] = (ToolCategory.TERMINAL,),
) -> tuple[ToolSpec, ...]:
    """Narrow a tool list for one run.

    Args:
        tools: Specs or raw definitions offered by the host.
        capability_filter: The active provider's capability filter.
        allowed_names: Optional explicit allow-list; ``None`` allows all.
        disabled_categories: Categories to remove entirely.

    Returns:
        The surviving specs, in their original order.
    """
    specs: Sequence[ToolSpec] = [ToolSpec.from_definition(tool) for tool in tools]
    if capability_filter is not None:
        specs = list(capability_filter(specs))
    if allowed_names is not None:
        allowed = set(allowed_names)
        specs = [spec for spec in specs if spec.name in allowed]
    if disabled_categories:
        disabled = set(disabled_categories)
        removed = [spec.name for spec in specs if spec.category in disabled]
        if removed:
            LOGGER.debug("Disabled tools by category: %s", ", ".join(removed))
        specs = [spec for spec in specs if spec.category not in disabled]
    return tuple(specs)
