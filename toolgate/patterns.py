"""
Tool name patterns.

The pattern language is intentionally tiny:

    wp_list_posts     literal tool name
    wp_list_*         "*" matches any run of characters (including none)
    *_posts           wildcards may appear anywhere, any number of times
    content:*         every tool in the "content" category

There are no character classes, escaping or "?" support. Tool names are plain
identifiers, so anything more would only make manifests harder to audit.
"""

from typing import Iterable

from toolgate.registry import ToolCategory, ToolDescriptor

CATEGORY_SUFFIX = ":*"

_CATEGORIES = {category.value: category for category in ToolCategory}


def match_pattern(pattern: str, name: str) -> bool:
    """
    Return True if `name` matches `pattern`.

    A pattern without "*" must equal the name. Otherwise the text before the
    first "*" must be a prefix, the text after the last "*" must be a suffix,
    and the pieces in between must appear in order without overlapping.
    """
    if "*" not in pattern:
        return pattern == name

    head, *middle, tail = pattern.split("*")
    if not name.startswith(head) or not name.endswith(tail):
        return False

    position = len(head)
    end = len(name) - len(tail)
    if end < position:
        return False

    for piece in middle:
        if not piece:
            continue
        index = name.find(piece, position, end)
        if index < 0:
            return False
        position = index + len(piece)
    return True


def is_category_pattern(pattern: str) -> bool:
    return pattern.endswith(CATEGORY_SUFFIX)


class PatternResolver:
    """
    Resolves patterns to tool names against a fixed catalog snapshot.

    Patterns that resolve to nothing are not errors (manifests are often
    written ahead of tool availability) but each one adds a warning. Warnings
    are de-duplicated and kept in first-seen order so that compiling the same
    inputs twice yields the same list.
    """

    def __init__(self, catalog: Iterable[ToolDescriptor]):
        self._catalog = tuple(catalog)
        self._names = {tool.name for tool in self._catalog}
        self._warnings: list[str] = []

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def warn(self, message: str) -> None:
        if message not in self._warnings:
            self._warnings.append(message)

    def resolve(self, pattern: str) -> list[str]:
        """Return catalog tool names matching `pattern`, in catalog order."""
        if is_category_pattern(pattern):
            category = _CATEGORIES.get(pattern[: -len(CATEGORY_SUFFIX)])
            if category is None:
                self.warn(f'Unknown category in pattern: "{pattern}"')
                return []
            matched = [tool.name for tool in self._catalog if tool.category == category]
            if not matched:
                self.warn(f'Pattern matched no tools: "{pattern}"')
            return matched

        if "*" in pattern:
            matched = [tool.name for tool in self._catalog if match_pattern(pattern, tool.name)]
            if not matched:
                self.warn(f'Pattern matched no tools: "{pattern}"')
            return matched

        if pattern in self._names:
            return [pattern]

        self.warn(f'Unknown tool: "{pattern}"')
        return []

    def resolve_all(self, patterns: Iterable[str]) -> list[str]:
        """Union of resolve() over several patterns, in catalog order."""
        wanted: set[str] = set()
        for pattern in patterns:
            wanted.update(self.resolve(pattern))
        return [tool.name for tool in self._catalog if tool.name in wanted]
