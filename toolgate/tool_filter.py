"""
Tool filter compiler.

Combines every source of tool restrictions into one immutable answer to "is
this tool callable right now?". The pipeline is fixed:

    1. feature flags      a tool with a feature_flag is dropped unless that
                          flag is explicitly true
    2. manifest filter    enabled / disabled / tools_allow / tools_deny
                          (see manifest_filter.py)
    3. role allow-list    if the effective role has a whitelist, intersect
                          with it; a whitelist can only narrow
    4. role deny-list     subtract the role's merged deny list, last, so a
                          role denial beats an explicit manifest `enabled`

Each stage appends FilterSteps, so `CompiledToolFilter.explain(name)` can say
exactly which rules touched a tool. Compilation is a pure function of its
inputs: the same catalog, manifest, effective role and flags always give the
same enabled set, warnings and steps.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from toolgate.manifest import ManifestToolsConfig
from toolgate.manifest_filter import FilterStep, apply_manifest_filter
from toolgate.patterns import PatternResolver
from toolgate.registry import ToolDescriptor
from toolgate.resolver import EffectiveRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolFilterOptions:
    """
    Declared inputs of a compilation.

    Attributes:
        catalog: Every registered tool; required
        manifest_tools: The manifest's tools section (None = no rules)
        effective_role: Resolved role and merged tool lists (None = no role)
        feature_flags: Flag name -> enabled
    """

    catalog: Sequence[ToolDescriptor] | None
    manifest_tools: ManifestToolsConfig | None = None
    effective_role: EffectiveRole | None = None
    feature_flags: Mapping[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledToolFilter:
    """
    Immutable result of compile_tool_filter().

    Superseded, never mutated: when an input changes, compile a new filter
    and swap the reference.
    """

    enabled_tools: frozenset[str]
    warnings: tuple[str, ...]
    steps: tuple[FilterStep, ...]
    catalog: tuple[ToolDescriptor, ...]

    def is_enabled(self, tool_name: str) -> bool:
        return tool_name in self.enabled_tools

    def get_enabled_definitions(self) -> list[ToolDescriptor]:
        """Enabled descriptors in catalog order."""
        return [tool for tool in self.catalog if tool.name in self.enabled_tools]

    def explain(self, tool_name: str) -> list[FilterStep]:
        """Steps that applied to `tool_name`, in pipeline order."""
        return [step for step in self.steps if tool_name in step.matched_tools]


def compile_tool_filter(options: ToolFilterOptions) -> CompiledToolFilter:
    """
    Compile filter inputs into a CompiledToolFilter.

    Raises:
        ValueError: if no catalog was supplied. Bad patterns and unknown
            names never raise; they become warnings.
    """
    if options is None or options.catalog is None:
        raise ValueError("compile_tool_filter requires a tool catalog")

    catalog = tuple(options.catalog)
    resolver = PatternResolver(catalog)
    steps: list[FilterStep] = []

    # Step 1: feature flags
    working: set[str] = set()
    gated: dict[str, list[str]] = {}
    for tool in catalog:
        if tool.feature_flag and options.feature_flags.get(tool.feature_flag) is not True:
            gated.setdefault(tool.feature_flag, []).append(tool.name)
        else:
            working.add(tool.name)
    for flag, names in gated.items():
        steps.append(FilterStep("feature-flag", "deny", flag, tuple(names)))

    # Step 2: manifest rules, applied to the flag-gated set
    manifest_result = apply_manifest_filter(
        catalog, options.manifest_tools, candidates=working, resolver=resolver
    )
    working = set(manifest_result.enabled_tools)
    steps.extend(manifest_result.steps)

    role = options.effective_role
    if role is not None:
        # Step 3: role whitelist
        if role.tools.allowed is not None:
            allowed: set[str] = set()
            for pattern in role.tools.allowed:
                kept = [name for name in resolver.resolve(pattern) if name in working]
                allowed.update(kept)
                steps.append(FilterStep("role-allowed", "allow", pattern, tuple(kept)))
            working &= allowed

        # Step 4: role deny list
        for pattern in role.tools.denied:
            removed = [name for name in resolver.resolve(pattern) if name in working]
            working.difference_update(removed)
            steps.append(FilterStep("role-denied", "deny", pattern, tuple(removed)))

    compiled = CompiledToolFilter(
        enabled_tools=frozenset(working),
        warnings=tuple(resolver.warnings),
        steps=tuple(steps),
        catalog=catalog,
    )
    logger.debug(
        "Compiled tool filter: %d of %d tools enabled, %d warnings",
        len(compiled.enabled_tools),
        len(catalog),
        len(compiled.warnings),
    )
    return compiled
