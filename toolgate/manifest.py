"""
Project manifest: the operator's declarative tool and role configuration.

The manifest lives in the project root as toolgate.yaml (or .yml / .json):

    schema_version: 1
    tools:
      enabled: ["core:*", "content:*", "wp_list_plugins"]
      disabled: ["wp_delete_post"]
      overrides:
        tools_allow: ["wp_list_users"]
        tools_deny: ["wp_update_*"]
    roles:
      active: content-editor
      auto_detect: true
      overrides:
        tools_allow: ["wp_seo_audit"]
        tools_deny: ["wp_create_post"]
    features:
      WP_SEO_AUDIT_ENABLED: true

Unknown keys inside `tools` and `roles` are rejected rather than ignored, so a
typo such as `disable:` cannot silently leave tools enabled. Other top-level
sections are ignored; the manifest may carry configuration for other tooling.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

MANIFEST_SCHEMA_VERSION = 1
MANIFEST_FILENAMES = ("toolgate.yaml", "toolgate.yml", "toolgate.json")


class ManifestError(Exception):
    """The manifest exists but cannot be parsed or validated."""

    def __init__(self, message: str, path: str):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}")


class ToolOverrides(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tools_allow: tuple[str, ...] = ()
    tools_deny: tuple[str, ...] = ()


class ManifestToolsConfig(BaseModel):
    """
    Enable/disable rules evaluated against the tool catalog.

    `enabled is None` means "no restriction". An explicit empty list enables
    nothing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: tuple[str, ...] | None = None
    disabled: tuple[str, ...] = ()
    overrides: ToolOverrides = ToolOverrides()


class ManifestRolesConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    active: str | None = None
    auto_detect: bool = True
    overrides: ToolOverrides = ToolOverrides()


class ProjectManifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: int = MANIFEST_SCHEMA_VERSION
    tools: ManifestToolsConfig = ManifestToolsConfig()
    roles: ManifestRolesConfig = ManifestRolesConfig()
    features: dict[str, bool] = Field(default_factory=dict)


@dataclass(frozen=True)
class ManifestLoadResult:
    """
    Outcome of looking for a manifest.

    Three shapes:
        found=False                      no manifest, defaults apply
        found=True, manifest set         parsed successfully
        found=True, error set            present but broken
    """

    found: bool
    path: str | None = None
    manifest: ProjectManifest | None = None
    error: str | None = None


def find_manifest(project_root: Path | str) -> Path | None:
    root = Path(project_root)
    for filename in MANIFEST_FILENAMES:
        candidate = root / filename
        if candidate.is_file():
            return candidate
    return None


def parse_manifest(text: str, path: str) -> ProjectManifest:
    """
    Parse and validate manifest text.

    Raises:
        ManifestError: on bad syntax, a schema violation, or an unsupported
            schema_version
    """
    try:
        if path.endswith(".json"):
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ManifestError(f"Failed to parse manifest: {e}", path) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a mapping", path)

    try:
        manifest = ProjectManifest.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ManifestError(f'Invalid "{location}": {error["msg"]}', path) from e

    if manifest.schema_version > MANIFEST_SCHEMA_VERSION:
        raise ManifestError(
            f"Unsupported manifest schema_version: {manifest.schema_version}", path
        )
    return manifest


def load_manifest(project_root: Path | str) -> ManifestLoadResult:
    """Find and load the project manifest. Never raises."""
    path = find_manifest(project_root)
    if path is None:
        return ManifestLoadResult(found=False)

    try:
        manifest = parse_manifest(path.read_text(encoding="utf-8"), str(path))
    except (OSError, UnicodeDecodeError) as e:
        return ManifestLoadResult(found=True, path=str(path), error=f"Failed to read manifest: {e}")
    except ManifestError as e:
        return ManifestLoadResult(found=True, path=str(path), error=e.message)

    logger.debug("Loaded manifest from %s", path)
    return ManifestLoadResult(found=True, path=str(path), manifest=manifest)
