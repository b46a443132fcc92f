"""
Access controller: the per-server session object that answers "is tool X
callable right now?".

It owns every input of the tool filter:

    - the role store (bundled, global and project role files)
    - the runtime role state (CLI / marker file / wp_load_role override)
    - the project manifest (toolgate.yaml)
    - feature flags (settings, overridden by the manifest's `features`)
    - the remote user's capabilities, for role auto-detection

and keeps one compiled snapshot of them. Readers (the middleware, on every
tools/list and tools/call) only dereference the current snapshot; writers
(role changes, capability updates) recompile under a lock and replace the
snapshot in a single assignment. A reader therefore sees either the old
filter or the new one, never a half-built one.

A manifest that exists but cannot be parsed fails closed: every tool is
disabled until the file is fixed, and the parse error is reported as a warning.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from toolgate.manifest import (
    ManifestLoadResult,
    ManifestRolesConfig,
    ManifestToolsConfig,
    load_manifest,
)
from toolgate.registry import ToolDescriptor, ToolRegistry
from toolgate.resolver import (
    DEFAULT_CAPABILITY_MAP,
    CapabilityRoleMap,
    EffectiveRole,
    format_role_info,
    resolve_effective_role,
)
from toolgate.roles import RoleStore
from toolgate.runtime_state import (
    PERSISTED_SOURCES,
    RoleStateResult,
    RuntimeRoleState,
    StateSource,
)
from toolgate.tool_filter import CompiledToolFilter, ToolFilterOptions, compile_tool_filter

logger = logging.getLogger(__name__)

# Manifest rules used when the manifest file is present but broken.
FAIL_CLOSED_TOOLS = ManifestToolsConfig(enabled=())


@dataclass(frozen=True)
class AccessSnapshot:
    """Everything one compilation produced. Replaced as a whole, never mutated."""

    filter: CompiledToolFilter
    effective_role: EffectiveRole
    warnings: tuple[str, ...]


class AccessController:
    """
    Holds the filter inputs and the current compiled snapshot.

    Build it with AccessController.from_project() for a real project
    directory, or pass the pieces directly (tests do this).
    """

    def __init__(
        self,
        registry: ToolRegistry,
        store: RoleStore,
        runtime_state: RuntimeRoleState,
        *,
        manifest: ManifestLoadResult | None = None,
        feature_flags: Mapping[str, bool] | None = None,
        capabilities: Iterable[str] = (),
        capability_map: CapabilityRoleMap = DEFAULT_CAPABILITY_MAP,
    ):
        self.registry = registry
        self.store = store
        self.runtime_state = runtime_state
        self.manifest = manifest or ManifestLoadResult(found=False)
        self.capability_map = capability_map
        self._base_flags = dict(feature_flags or {})
        self._capabilities = tuple(capabilities)
        self._lock = threading.RLock()
        self._snapshot = self._compile()

    @classmethod
    def from_project(
        cls,
        project_root: Path | str,
        registry: ToolRegistry,
        *,
        global_dir: Path | None = None,
        feature_flags: Mapping[str, bool] | None = None,
        startup_role: str | None = None,
        capabilities: Iterable[str] = (),
    ) -> "AccessController":
        """
        Load roles, manifest and runtime state for `project_root`.

        Args:
            project_root: Directory holding toolgate.yaml and roles/
            registry: The tool catalog
            global_dir: Override for the per-user role directory
            feature_flags: Flags from settings (the manifest overrides them)
            startup_role: Role to activate as if set from the CLI
            capabilities: Remote-user capabilities for auto-detection
        """
        store = RoleStore(project_root, global_dir=global_dir)
        runtime_state = RuntimeRoleState(store)
        runtime_state.initialize(project_root)

        if startup_role:
            result = runtime_state.set_role(startup_role, "cli")
            if not result.success:
                logger.warning("Startup role ignored: %s", result.error)

        return cls(
            registry,
            store,
            runtime_state,
            manifest=load_manifest(project_root),
            feature_flags=feature_flags,
            capabilities=capabilities,
        )

    # -----------------------------------------------------------------------
    # Filter inputs
    # -----------------------------------------------------------------------

    @property
    def manifest_tools(self) -> ManifestToolsConfig | None:
        if self.manifest.error:
            return FAIL_CLOSED_TOOLS
        if self.manifest.manifest is None:
            return None
        return self.manifest.manifest.tools

    @property
    def roles_config(self) -> ManifestRolesConfig | None:
        if self.manifest.manifest is None:
            return None
        return self.manifest.manifest.roles

    @property
    def feature_flags(self) -> dict[str, bool]:
        flags = dict(self._base_flags)
        if self.manifest.manifest is not None:
            flags.update(self.manifest.manifest.features)
        return flags

    @property
    def capabilities(self) -> tuple[str, ...]:
        return self._capabilities

    # -----------------------------------------------------------------------
    # Compilation
    # -----------------------------------------------------------------------

    def _compile(self) -> AccessSnapshot:
        resolution = resolve_effective_role(
            self.store,
            runtime_role=self.runtime_state.get_role(),
            roles_config=self.roles_config,
            capabilities=self._capabilities,
            capability_map=self.capability_map,
        )
        compiled = compile_tool_filter(
            ToolFilterOptions(
                catalog=self.registry.catalog(),
                manifest_tools=self.manifest_tools,
                effective_role=resolution.effective,
                feature_flags=self.feature_flags,
            )
        )

        warnings: list[str] = []
        if self.manifest.error:
            warnings.append(
                f"Manifest {self.manifest.path} is invalid, all tools disabled: "
                f"{self.manifest.error}"
            )
        warnings.extend(f"Role file skipped: {error}" for error in self.store.errors)
        warnings.extend(resolution.effective.warnings)
        warnings.extend(compiled.warnings)

        for warning in warnings:
            logger.warning(warning)
        logger.info(
            "Tool filter compiled",
            extra={
                "access_data": {
                    "role": resolution.effective.name,
                    "role_source": resolution.effective.source,
                    "enabled_tools": len(compiled.enabled_tools),
                    "total_tools": len(compiled.catalog),
                    "warnings": len(warnings),
                }
            },
        )
        return AccessSnapshot(
            filter=compiled,
            effective_role=resolution.effective,
            warnings=tuple(dict.fromkeys(warnings)),
        )

    def recompile(self) -> CompiledToolFilter:
        """Recompile from the current inputs and swap in the new snapshot."""
        with self._lock:
            self._snapshot = self._compile()
            return self._snapshot.filter

    def reload(self) -> CompiledToolFilter:
        """Re-read role files and the manifest from disk, then recompile."""
        with self._lock:
            self.store.reload()
            self.manifest = load_manifest(self.store.project_root)
            return self.recompile()

    # -----------------------------------------------------------------------
    # Query surface
    # -----------------------------------------------------------------------

    @property
    def compiled_filter(self) -> CompiledToolFilter:
        return self._snapshot.filter

    @property
    def effective_role(self) -> EffectiveRole:
        return self._snapshot.effective_role

    def is_enabled(self, tool_name: str) -> bool:
        return self._snapshot.filter.is_enabled(tool_name)

    def list_enabled(self) -> list[ToolDescriptor]:
        return self._snapshot.filter.get_enabled_definitions()

    def get_warnings(self) -> list[str]:
        return list(self._snapshot.warnings)

    def describe_role(self) -> str:
        return format_role_info(self._snapshot.effective_role)

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def set_runtime_role(self, slug: str | None, source: StateSource = "tool") -> RoleStateResult:
        """
        Change the runtime role override and recompile on success.

        A failed change (unknown slug) leaves both the state and the current
        filter untouched.
        """
        with self._lock:
            if slug is None and source in PERSISTED_SOURCES:
                self.runtime_state.clear()
                result = RoleStateResult(success=True)
            else:
                result = self.runtime_state.set_role(slug, source)
            if not result.success:
                logger.warning(
                    "Role change rejected",
                    extra={"access_data": {"requested_role": slug, "reason": result.error}},
                )
                return result

            self.recompile()

        logger.info(
            "Runtime role changed",
            extra={
                "access_data": {
                    "role": slug,
                    "source": source,
                    "effective_role": self.effective_role.name,
                    "enabled_tools": len(self.compiled_filter.enabled_tools),
                }
            },
        )
        return result

    def set_capabilities(self, capabilities: Iterable[str]) -> CompiledToolFilter:
        with self._lock:
            self._capabilities = tuple(capabilities)
            return self.recompile()
