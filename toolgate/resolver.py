"""
Effective role resolution.

Exactly one role (or none) is active for a session. It is picked from, first
match wins:

    1. runtime override      set by the CLI, the state file, or wp_load_role
    2. configured default    manifest roles.active
    3. auto-detection        from the remote user's capabilities
    4. none                  no role restrictions

A slug that does not name a known role is never used: it adds a warning and
resolution falls through to the next source. After the role is chosen, the
manifest's roles.overrides are folded into its tool lists:

    tools_allow   extends an existing whitelist; with no whitelist it does
                  nothing (creating one would narrow an unrestricted role)
    tools_deny    always extends the deny list
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping

from toolgate.manifest import ManifestRolesConfig
from toolgate.roles import LoadedRole, RoleStore

logger = logging.getLogger(__name__)

ResolutionSource = Literal["config", "runtime", "auto-detect", "none"]


# ---------------------------------------------------------------------------
# Capability -> role table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CapabilityRoleMap:
    """
    Versioned lookup from remote-user capabilities to candidate role slugs.

    Attributes:
        version: Bumped whenever the table changes meaning
        mapping: Capability -> role slugs it suggests
        priority: Role slugs, highest priority first; decides between several
            candidates
    """

    version: int
    mapping: Mapping[str, tuple[str, ...]]
    priority: tuple[str, ...]

    def candidates(self, capabilities: Iterable[str]) -> list[str]:
        """All role slugs suggested by `capabilities`, first-seen order."""
        found: dict[str, None] = {}
        for capability in capabilities:
            for slug in self.mapping.get(capability, ()):
                found.setdefault(slug)
        return list(found)

    def detect(self, capabilities: Iterable[str]) -> str | None:
        """Pick the single highest-priority candidate, or None if nothing matches."""
        candidates = self.candidates(capabilities)
        if not candidates:
            return None
        for slug in self.priority:
            if slug in candidates:
                return slug
        return candidates[0]


DEFAULT_CAPABILITY_MAP = CapabilityRoleMap(
    version=1,
    mapping={
        "manage_options": ("site-admin", "developer"),
        "activate_plugins": ("site-admin", "developer"),
        "edit_theme_options": ("site-admin", "developer"),
        "install_plugins": ("developer",),
        "edit_files": ("developer",),
        "manage_network": ("site-admin",),
        "edit_others_posts": ("content-editor", "seo-specialist"),
        "edit_pages": ("content-editor",),
        "edit_published_posts": ("content-editor",),
        "publish_posts": ("content-editor",),
        "edit_posts": ("content-author",),
        "list_users": ("site-admin",),
        "create_users": ("site-admin",),
    },
    priority=("developer", "site-admin", "seo-specialist", "content-editor", "content-author"),
)


def auto_detect_role(
    capabilities: Iterable[str], capability_map: CapabilityRoleMap = DEFAULT_CAPABILITY_MAP
) -> str | None:
    return capability_map.detect(capabilities)


# ---------------------------------------------------------------------------
# Effective role
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveTools:
    """Merged tool lists. `allowed is None` means no whitelist is in force."""

    allowed: tuple[str, ...] | None = None
    denied: tuple[str, ...] = ()


@dataclass(frozen=True)
class EffectiveRole:
    role: LoadedRole | None
    source: ResolutionSource
    tools: EffectiveTools = field(default_factory=EffectiveTools)
    warnings: tuple[str, ...] = ()

    @property
    def name(self) -> str | None:
        return self.role.name if self.role else None


@dataclass(frozen=True)
class RoleResolution:
    effective: EffectiveRole
    success: bool


def default_effective_role() -> EffectiveRole:
    return EffectiveRole(role=None, source="none")


def resolve_effective_role(
    store: RoleStore,
    *,
    runtime_role: str | None = None,
    roles_config: ManifestRolesConfig | None = None,
    capabilities: Iterable[str] = (),
    capability_map: CapabilityRoleMap = DEFAULT_CAPABILITY_MAP,
) -> RoleResolution:
    """
    Resolve the session's effective role.

    Args:
        store: Where role slugs are looked up
        runtime_role: Slug set for this session (CLI, state file, or tool)
        roles_config: The manifest's roles section
        capabilities: Remote-user capabilities for auto-detection
        capability_map: Capability -> role table used by auto-detection

    Returns:
        RoleResolution. `success` is False only when a role was requested
        (runtime or config) and none could be resolved; warnings alone do not
        make resolution fail.
    """
    roles_config = roles_config or ManifestRolesConfig()
    capabilities = list(capabilities)
    warnings: list[str] = []
    role: LoadedRole | None = None
    source: ResolutionSource = "none"

    if runtime_role:
        role = store.get(runtime_role)
        if role is not None:
            source = "runtime"
        else:
            warnings.append(f'Runtime role override not found: "{runtime_role}"')

    if role is None and roles_config.active:
        role = store.get(roles_config.active)
        if role is not None:
            source = "config"
        else:
            warnings.append(f'Config active role not found: "{roles_config.active}"')

    if role is None and roles_config.auto_detect and capabilities:
        detected = capability_map.detect(capabilities)
        if detected is not None:
            role = store.get(detected)
            if role is not None:
                source = "auto-detect"
            else:
                warnings.append(f'Auto-detected role not available: "{detected}"')

    tools = _merge_overrides(role, roles_config, warnings)
    requested = bool(runtime_role or roles_config.active)
    effective = EffectiveRole(role=role, source=source, tools=tools, warnings=tuple(warnings))

    logger.debug("Resolved role %s via %s", effective.name, source)
    return RoleResolution(effective=effective, success=role is not None or not requested)


def _merge_overrides(
    role: LoadedRole | None, roles_config: ManifestRolesConfig, warnings: list[str]
) -> EffectiveTools:
    allowed = role.tools.allowed if role is not None else None
    denied = role.tools.denied if role is not None else ()
    overrides = roles_config.overrides

    if overrides.tools_allow:
        if allowed is not None:
            allowed = tuple(dict.fromkeys([*allowed, *overrides.tools_allow]))
        else:
            warnings.append("roles.overrides.tools_allow ignored: no role whitelist is active")

    if overrides.tools_deny:
        denied = tuple(dict.fromkeys([*denied, *overrides.tools_deny]))

    return EffectiveTools(allowed=allowed, denied=denied)


def format_role_info(effective: EffectiveRole) -> str:
    """One-line description of the effective role, for logs and the CLI."""
    if effective.role is None:
        return "No role active"
    return f"{effective.role.name} (via {effective.source}) - {effective.role.description}"
