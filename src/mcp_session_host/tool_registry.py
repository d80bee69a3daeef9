"""
Tool Registry

Holds the tools every session's handler is populated with. The registry is
applied to each freshly built FastMCP server, so a reconstructed instance
exposes exactly the operations of the instance it replaces.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from fastmcp import FastMCP


@dataclass(frozen=True)
class ToolDefinition:
    """A named tool function with an optional description."""

    name: str
    fn: Callable[..., Any]
    description: str | None = None


class ToolRegistry:
    """Ordered collection of tool definitions keyed by name."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def add(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> ToolDefinition:
        tool_name = name or fn.__name__
        if tool_name in self._tools:
            raise ValueError(f"Tool '{tool_name}' is already registered")
        definition = ToolDefinition(name=tool_name, fn=fn, description=description)
        self._tools[tool_name] = definition
        return definition

    def tool(self, name: str | None = None, description: str | None = None):
        """Decorator form of add()."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(fn, name=name, description=description)
            return fn

        return decorator

    def merge(self, other: ToolRegistry) -> None:
        for definition in other:
            self.add(definition.fn, name=definition.name, description=definition.description)

    def names(self) -> list[str]:
        return list(self._tools)

    def apply_to(self, server: FastMCP) -> None:
        """Register every tool on a FastMCP server."""
        for definition in self._tools.values():
            server.tool(
                definition.fn,
                name=definition.name,
                description=definition.description,
            )

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def build_default_tool_registry() -> ToolRegistry:
    """Registry with the basic tools served by every session."""
    registry = ToolRegistry()

    @registry.tool(description="Echo back the provided text.")
    def echo(text: str) -> str:
        return text

    @registry.tool(description="Add two numbers.")
    def add(a: float, b: float) -> float:
        return a + b

    return registry
