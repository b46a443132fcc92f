"""
Tool catalog: descriptors and the registry that owns them.

Every tool the server can expose is described once, at registration time, by a
ToolDescriptor. The descriptor carries only what the access-control engine needs:

    ToolDescriptor(name="wp_list_posts", category=ToolCategory.CONTENT)
    ToolDescriptor(name="wp_seo_audit", category=ToolCategory.WORKFLOWS,
                   feature_flag="WP_SEO_AUDIT_ENABLED")

The filter engine references descriptors but never owns or mutates them. The
registry is the single source of truth for "which tools exist"; the compiled
filter (tool_filter.py) answers "which of them are callable right now".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator


class ToolCategory(str, Enum):
    """Tool categories, usable in patterns as "<category>:*"."""

    CORE = "core"
    CONTENT = "content"
    TAXONOMY = "taxonomy"
    USERS = "users"
    PLUGINS = "plugins"
    THEMES = "themes"
    WORKFLOWS = "workflows"
    COOKBOOK = "cookbook"
    ROLES = "roles"
    BATCH = "batch"
    SETTINGS = "settings"
    ANALYTICS = "analytics"
    DISCOVERY = "discovery"
    MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class ToolDescriptor:
    """
    Immutable metadata about one registered tool.

    Attributes:
        name: Unique tool name (what MCP clients see in tools/list)
        category: Grouping used by "category:*" patterns
        feature_flag: If set, the tool is hidden unless this flag is true
        description: Human-readable summary, shown by the role tools
    """

    name: str
    category: ToolCategory
    feature_flag: str | None = None
    description: str = ""


class ToolRegistry:
    """
    Ordered collection of ToolDescriptors keyed by name.

    Registration order is preserved so that listings are stable across runs.
    """

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()):
        self._tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def by_category(self, category: ToolCategory) -> list[ToolDescriptor]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def catalog(self) -> tuple[ToolDescriptor, ...]:
        """Snapshot of all descriptors, in registration order."""
        return tuple(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
