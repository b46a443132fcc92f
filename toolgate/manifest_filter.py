"""
Manifest tool filter: applies the manifest's `tools` section to a catalog.

Evaluation order, each stage working on the output of the previous one:

    1. enabled                 restrict to tools matching at least one pattern
                               (absent = no restriction)
    2. disabled                subtract matches
    3. overrides.tools_allow   re-admit matches that `enabled` left out
    4. overrides.tools_deny    subtract matches, last, so it beats everything

The result is always a subset of the candidate set handed in. tools_allow can
undo `enabled` but never `disabled`, and it can never resurrect a tool that was
not a candidate to begin with (e.g. one hidden by a feature flag).
"""

from dataclasses import dataclass, field
from typing import Iterable, Literal, Sequence

from toolgate.manifest import ManifestToolsConfig
from toolgate.patterns import PatternResolver
from toolgate.registry import ToolDescriptor

StepSource = Literal[
    "feature-flag",
    "manifest-enabled",
    "manifest-disabled",
    "manifest-allow",
    "manifest-deny",
    "role-allowed",
    "role-denied",
]


@dataclass(frozen=True)
class FilterStep:
    """
    One audit record produced while filtering.

    Attributes:
        source: Which rule produced the step
        action: "allow" keeps/adds tools, "deny" removes them
        pattern: The pattern (or feature flag name) that was evaluated
        matched_tools: Tools the step actually applied to, in catalog order
    """

    source: StepSource
    action: Literal["allow", "deny"]
    pattern: str
    matched_tools: tuple[str, ...]


@dataclass(frozen=True)
class ManifestFilterResult:
    enabled_tools: frozenset[str]
    warnings: list[str] = field(default_factory=list)
    steps: list[FilterStep] = field(default_factory=list)


def apply_manifest_filter(
    all_tools: Sequence[ToolDescriptor],
    manifest_tools: ManifestToolsConfig | None,
    *,
    candidates: Iterable[str] | None = None,
    resolver: PatternResolver | None = None,
) -> ManifestFilterResult:
    """
    Evaluate manifest enable/disable/override rules.

    Args:
        all_tools: The full catalog; patterns are resolved against it
        manifest_tools: The manifest's tools section (None = no rules)
        candidates: Starting set of tool names (defaults to the whole
            catalog); the result never leaves this set
        resolver: Shared resolver so a caller can collect warnings across
            several stages

    Returns:
        ManifestFilterResult with the enabled names, pattern warnings and
        one FilterStep per evaluated pattern
    """
    catalog_names = [tool.name for tool in all_tools]
    if candidates is None:
        base = set(catalog_names)
    else:
        base = set(candidates) & set(catalog_names)
    resolver = resolver or PatternResolver(all_tools)
    steps: list[FilterStep] = []

    if manifest_tools is None:
        return ManifestFilterResult(frozenset(base), resolver.warnings, steps)

    working = set(base)

    if manifest_tools.enabled is not None:
        keep: set[str] = set()
        for pattern in manifest_tools.enabled:
            matched = [name for name in resolver.resolve(pattern) if name in working]
            keep.update(matched)
            steps.append(FilterStep("manifest-enabled", "allow", pattern, tuple(matched)))
        working &= keep

    disabled: set[str] = set()
    for pattern in manifest_tools.disabled:
        matched = resolver.resolve(pattern)
        disabled.update(matched)
        removed = [name for name in matched if name in working]
        working.difference_update(removed)
        steps.append(FilterStep("manifest-disabled", "deny", pattern, tuple(removed)))

    for pattern in manifest_tools.overrides.tools_allow:
        added = [
            name
            for name in resolver.resolve(pattern)
            if name in base and name not in working and name not in disabled
        ]
        working.update(added)
        steps.append(FilterStep("manifest-allow", "allow", pattern, tuple(added)))

    for pattern in manifest_tools.overrides.tools_deny:
        removed = [name for name in resolver.resolve(pattern) if name in working]
        working.difference_update(removed)
        steps.append(FilterStep("manifest-deny", "deny", pattern, tuple(removed)))

    return ManifestFilterResult(frozenset(working), resolver.warnings, steps)
