"""
Role definitions: parsing, validation, layered discovery and merging.

A role is a persona bundle for an AI agent. Besides prose for the agent
(description, context, focus areas, things to avoid) it may restrict tools:

    name: content-editor
    description: Edits and publishes site content
    context: You are a careful content editor...
    tools:
      allowed: ["content:*", "taxonomy:*"]   # whitelist (omit = no whitelist)
      denied: ["wp_delete_post"]             # always removed

Roles are discovered from three tiers, lowest precedence first:

    1. bundled   toolgate/bundled_roles/      shipped with the package
    2. global    ~/.toolgate/roles/           per-user customizations
    3. project   <project_root>/roles/        per-project customizations

A role with the same name in a higher tier is merged over the lower one
(merge_roles). A broken file never aborts discovery: it is recorded in
DiscoveredRoles.errors and the remaining files still load.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

ROLE_SCHEMA_VERSION = 1

ROLE_FILE_SUFFIXES = (".yaml", ".yml", ".json")

BUNDLED_ROLES_DIR = Path(__file__).parent / "bundled_roles"
GLOBAL_ROLES_DIR = Path.home() / ".toolgate" / "roles"
PROJECT_ROLES_DIRNAME = "roles"

ROLE_NAME_PATTERN = re.compile(r"[a-z](?:[a-z0-9-]*[a-z0-9])?")


class RoleSource(str, Enum):
    PROJECT = "project"
    GLOBAL = "global"
    BUNDLED = "bundled"
    BUILTIN = "builtin"
    API = "api"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RoleError(Exception):
    """Base class for problems with a single role file."""

    def __init__(self, message: str, file_path: str):
        self.message = message
        self.file_path = file_path
        super().__init__(message)


class RoleValidationError(RoleError):
    """
    The role file could not be parsed or does not match the role schema.

    Attributes:
        file_path: The offending file
        field: Dotted path of the invalid field, when known (e.g. "tools.denied")
    """

    def __init__(self, message: str, file_path: str, field: str | None = None):
        self.field = field
        super().__init__(message, file_path)


class RoleSchemaVersionError(RoleError):
    """The role file declares a schema_version this build does not understand."""

    def __init__(self, message: str, file_path: str, suggestion: str):
        self.suggestion = suggestion
        super().__init__(message, file_path)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class RoleTools(BaseModel):
    """
    Tool restrictions declared by a role.

    `allowed is None` means "no whitelist": every tool stays a candidate unless
    denied. An empty tuple is a whitelist that allows nothing.
    """

    model_config = ConfigDict(frozen=True)

    allowed: tuple[str, ...] | None = None
    denied: tuple[str, ...] = ()


class Role(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    context: str
    schema_version: int = ROLE_SCHEMA_VERSION
    focus_areas: tuple[str, ...] = ()
    avoid: tuple[str, ...] = ()
    tools: RoleTools = RoleTools()
    priority: float | None = None
    version: str | None = None
    tags: tuple[str, ...] = ()
    author: str | None = None

    @field_validator("name")
    @classmethod
    def _name_is_slug(cls, value: str) -> str:
        if not _is_slug(value):
            raise ValueError(
                f'Invalid role name "{value}": must be lowercase slug format '
                '(e.g. "content-editor")'
            )
        return value

    @field_validator("description", "context")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class LoadedRole(Role):
    """A Role plus where it came from. Never mutated; merging builds a new one."""

    source: RoleSource
    source_path: str


def _is_slug(value: str) -> bool:
    return ROLE_NAME_PATTERN.fullmatch(value) is not None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleLoadResult:
    path: str
    role: LoadedRole | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.role is not None


def validate_role(data: Any, file_path: str) -> Role:
    """
    Validate a parsed role document.

    Raises:
        RoleSchemaVersionError: schema_version is not an integer or is newer
            than ROLE_SCHEMA_VERSION
        RoleValidationError: any other schema violation
    """
    if not isinstance(data, dict):
        raise RoleValidationError("Role must be a YAML/JSON mapping", file_path)

    if "schema_version" in data:
        schema_version = data["schema_version"]
        if not isinstance(schema_version, int) or isinstance(schema_version, bool):
            raise RoleSchemaVersionError(
                f"Invalid schema_version: expected integer, got {type(schema_version).__name__}",
                file_path,
                f'Set "schema_version: {ROLE_SCHEMA_VERSION}".',
            )
        if schema_version > ROLE_SCHEMA_VERSION:
            raise RoleSchemaVersionError(
                f"Unsupported role schema_version: {schema_version}",
                file_path,
                f"This version of toolgate understands role schema_version "
                f"{ROLE_SCHEMA_VERSION}. Upgrade toolgate to use this role.",
            )

    try:
        return Role.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field_path = ".".join(str(part) for part in error["loc"])
        if error["type"] == "missing":
            message = f'Missing required field "{field_path}"'
        else:
            message = f'Invalid "{field_path}": {error["msg"].removeprefix("Value error, ")}'
        raise RoleValidationError(message, file_path, field_path) from e


def parse_role_text(text: str, file_path: str) -> Any:
    """Parse role file text by extension. Raises RoleValidationError on bad syntax."""
    suffix = Path(file_path).suffix.lower()
    try:
        if suffix == ".json":
            return json.loads(text)
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise RoleValidationError(f"Failed to parse {suffix}: {e}", file_path) from e
    raise RoleValidationError(
        f"Unsupported file extension: {suffix} (use .yaml, .yml, or .json)", file_path
    )


def load_role_file(path: Path | str, source: RoleSource = RoleSource.PROJECT) -> RoleLoadResult:
    """Read, parse and validate one role file. Never raises for bad content."""
    file_path = str(path)
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return RoleLoadResult(path=file_path, error=f"Failed to read file: {e}")

    try:
        role = validate_role(parse_role_text(text, file_path), file_path)
    except RoleError as e:
        return RoleLoadResult(path=file_path, error=e.message)

    loaded = LoadedRole(**role.model_dump(exclude_unset=True), source=source, source_path=file_path)
    return RoleLoadResult(path=file_path, role=loaded)


def load_roles_from_directory(directory: Path, source: RoleSource) -> list[RoleLoadResult]:
    """Load every role file in `directory` (non-recursive), sorted by filename."""
    if not directory.is_dir():
        return []
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.debug("Cannot list role directory %s: %s", directory, e)
        return []
    return [
        load_role_file(entry, source)
        for entry in entries
        if entry.is_file() and entry.suffix.lower() in ROLE_FILE_SUFFIXES
    ]


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------
# Same-named roles from different tiers are merged field by field. Each field
# has exactly one strategy, so "allowed replaces, denied concatenates" is a
# property of this table rather than of a generic deep merge.


class MergeStrategy(str, Enum):
    CHILD_WINS = "child_wins"  # scalar: child value if the child set it
    CONCAT = "concat"  # list: parent + child, duplicates dropped
    REPLACE = "replace"  # list: child replaces parent if the child set it


ROLE_MERGE_STRATEGY: dict[str, MergeStrategy] = {
    "description": MergeStrategy.CHILD_WINS,
    "context": MergeStrategy.CHILD_WINS,
    "schema_version": MergeStrategy.CHILD_WINS,
    "priority": MergeStrategy.CHILD_WINS,
    "version": MergeStrategy.CHILD_WINS,
    "author": MergeStrategy.CHILD_WINS,
    "focus_areas": MergeStrategy.CONCAT,
    "avoid": MergeStrategy.CONCAT,
    "tags": MergeStrategy.CONCAT,
    # An explicit child whitelist must not inherit a parent's wider one.
    "tools.allowed": MergeStrategy.REPLACE,
    "tools.denied": MergeStrategy.CONCAT,
}


def _get(model: BaseModel, path: str) -> Any:
    value: Any = model
    for part in path.split("."):
        value = getattr(value, part)
    return value


def _is_set(model: BaseModel, path: str) -> bool:
    *parents, leaf = path.split(".")
    current: Any = model
    for part in parents:
        if part not in current.model_fields_set:
            return False
        current = getattr(current, part)
    return leaf in current.model_fields_set


def _concat(parent: Iterable[str], child: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys([*parent, *child]))


def merge_roles(parent: LoadedRole, child: LoadedRole) -> LoadedRole:
    """
    Merge `child` (higher precedence tier) over `parent`.

    Identity (name, source, source_path) always comes from the child. Every
    other field follows ROLE_MERGE_STRATEGY. Neither input is modified.
    """
    merged: dict[str, Any] = {}
    for path, strategy in ROLE_MERGE_STRATEGY.items():
        parent_value = _get(parent, path)
        child_value = _get(child, path)

        if strategy is MergeStrategy.CONCAT:
            value = _concat(parent_value, child_value)
        elif strategy is MergeStrategy.REPLACE:
            value = child_value if child_value is not None else parent_value
        else:
            value = child_value if _is_set(child, path) else parent_value

        if value is None:
            continue
        if path.startswith("tools."):
            merged.setdefault("tools", {})[path.split(".", 1)[1]] = value
        else:
            merged[path] = value

    return LoadedRole(
        name=child.name,
        source=child.source,
        source_path=child.source_path,
        **merged,
    )


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@dataclass
class DiscoveredRoles:
    """
    Result of role discovery.

    Attributes:
        roles: Role name -> merged LoadedRole
        sources: Tier name -> role names contributed by that tier
        errors: One "<path>: <reason>" entry per file that failed to load
    """

    roles: dict[str, LoadedRole] = field(default_factory=dict)
    sources: dict[str, list[str]] = field(
        default_factory=lambda: {"bundled": [], "global": [], "project": []}
    )
    errors: list[str] = field(default_factory=list)


def discover_roles(
    project_root: Path | str | None = None,
    *,
    global_dir: Path | None = None,
    bundled_dir: Path | None = None,
    include_global: bool = True,
    include_bundled: bool = True,
) -> DiscoveredRoles:
    """
    Discover and merge roles from the bundled, global and project tiers.

    Args:
        project_root: Directory whose roles/ subdirectory holds project roles
            (defaults to the current directory)
        global_dir: Override for the per-user directory (~/.toolgate/roles)
        bundled_dir: Override for the packaged defaults
        include_global: Scan the global tier
        include_bundled: Scan the bundled tier

    Returns:
        DiscoveredRoles; never raises for bad role files
    """
    root = Path(project_root) if project_root is not None else Path.cwd()
    tiers: list[tuple[RoleSource, Path]] = []
    if include_bundled:
        tiers.append((RoleSource.BUNDLED, bundled_dir or BUNDLED_ROLES_DIR))
    if include_global:
        tiers.append((RoleSource.GLOBAL, global_dir or GLOBAL_ROLES_DIR))
    tiers.append((RoleSource.PROJECT, root / PROJECT_ROLES_DIRNAME))

    discovered = DiscoveredRoles()
    for source, directory in tiers:
        for result in load_roles_from_directory(directory, source):
            if result.role is None:
                logger.warning("Skipping role file %s: %s", result.path, result.error)
                discovered.errors.append(f"{result.path}: {result.error}")
                continue
            role = result.role
            existing = discovered.roles.get(role.name)
            discovered.roles[role.name] = merge_roles(existing, role) if existing else role
            discovered.sources[source.value].append(role.name)

    logger.debug(
        "Discovered %d roles (%d errors)", len(discovered.roles), len(discovered.errors)
    )
    return discovered


class RoleStore:
    """
    Cached view over discover_roles() for one project.

    The first lookup triggers discovery; reload() discards the cache. Use
    RoleStore.from_roles() to build a store from in-memory roles.
    """

    def __init__(
        self,
        project_root: Path | str | None = None,
        *,
        global_dir: Path | None = None,
        bundled_dir: Path | None = None,
        include_global: bool = True,
        include_bundled: bool = True,
    ):
        self.project_root = Path(project_root) if project_root is not None else Path.cwd()
        self._discovery_options = {
            "global_dir": global_dir,
            "bundled_dir": bundled_dir,
            "include_global": include_global,
            "include_bundled": include_bundled,
        }
        self._discovered: DiscoveredRoles | None = None
        self._fixed = False

    @classmethod
    def from_roles(cls, roles: Iterable[LoadedRole]) -> "RoleStore":
        store = cls(include_global=False, include_bundled=False)
        discovered = DiscoveredRoles()
        for role in roles:
            existing = discovered.roles.get(role.name)
            discovered.roles[role.name] = merge_roles(existing, role) if existing else role
        store._discovered = discovered
        store._fixed = True
        return store

    def load(self) -> DiscoveredRoles:
        if self._discovered is None:
            self._discovered = discover_roles(self.project_root, **self._discovery_options)
        return self._discovered

    def reload(self) -> DiscoveredRoles:
        if self._fixed:
            return self.load()
        self._discovered = None
        return self.load()

    @property
    def roles(self) -> dict[str, LoadedRole]:
        return self.load().roles

    @property
    def errors(self) -> list[str]:
        return self.load().errors

    def get(self, name: str) -> LoadedRole | None:
        return self.load().roles.get(name)

    def names(self) -> list[str]:
        return sorted(self.load().roles)

    def __contains__(self, name: object) -> bool:
        return name in self.load().roles


def list_available_roles(project_root: Path | str | None = None, **options: Any) -> list[str]:
    """Sorted role names available to `project_root`."""
    return sorted(discover_roles(project_root, **options).roles)
