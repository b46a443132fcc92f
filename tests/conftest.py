"""
Shared test fixtures for the toolgate test suite.

Key fixtures:
- catalog: A small tool catalog spanning several categories, with one
  feature-flagged tool
- make_role: Factory for in-memory LoadedRole objects
- write_role: Factory that writes a role file into a tier directory
- project: An empty project directory (roles/ not yet created)
- global_dir: An empty per-user role directory, so tests never read the real
  ~/.toolgate/roles
- write_manifest: Writes toolgate.yaml into the project

Testing approach:
- Engine tests (patterns, manifest filter, resolver, compiler) build their
  inputs in memory and call pure functions.
- Store / state / CLI tests work on tmp_path directories.
- test_server.py drives the FastMCP server through the in-memory Client, so
  the filtering middleware runs exactly as it does over HTTP.
"""

from pathlib import Path

import pytest
import yaml

from toolgate.registry import ToolCategory, ToolDescriptor
from toolgate.roles import LoadedRole, RoleSource, RoleTools


@pytest.fixture
def catalog() -> tuple[ToolDescriptor, ...]:
    return (
        ToolDescriptor("wp_get_site_overview", ToolCategory.CORE),
        ToolDescriptor("wp_list_posts", ToolCategory.CONTENT),
        ToolDescriptor("wp_get_post", ToolCategory.CONTENT),
        ToolDescriptor("wp_create_post", ToolCategory.CONTENT),
        ToolDescriptor("wp_delete_post", ToolCategory.CONTENT),
        ToolDescriptor("wp_list_categories", ToolCategory.TAXONOMY),
        ToolDescriptor("wp_list_plugins", ToolCategory.PLUGINS),
        ToolDescriptor("wp_seo_audit", ToolCategory.WORKFLOWS, feature_flag="WP_SEO_AUDIT_ENABLED"),
        ToolDescriptor("wp_load_role", ToolCategory.ROLES),
    )


@pytest.fixture
def make_role():
    """
    Factory fixture for in-memory roles.

    Only the tool lists passed in are marked as set on the model, so merge
    behaviour matches roles loaded from files.

    Usage in tests:
        def test_something(make_role):
            role = make_role("editor", allowed=["content:*"], denied=["wp_delete_post"])
    """

    def _make_role(
        name: str,
        allowed: list[str] | None = None,
        denied: list[str] | None = None,
        source: RoleSource = RoleSource.PROJECT,
        **fields,
    ) -> LoadedRole:
        tools = {}
        if allowed is not None:
            tools["allowed"] = tuple(allowed)
        if denied is not None:
            tools["denied"] = tuple(denied)
        return LoadedRole(
            name=name,
            description=fields.pop("description", f"The {name} role"),
            context=fields.pop("context", f"You are acting as {name}."),
            tools=RoleTools(**tools),
            source=source,
            source_path=f"<memory>/{name}.yaml",
            **fields,
        )

    return _make_role


@pytest.fixture
def write_role():
    """
    Factory fixture that writes a YAML role file and returns its path.

    Usage in tests:
        path = write_role(project / "roles", "editor", tools={"denied": ["x"]})
    """

    def _write_role(directory: Path, name: str, filename: str | None = None, **fields) -> Path:
        data = {
            "name": name,
            "description": f"The {name} role",
            "context": f"You are acting as {name}.",
            **fields,
        }
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (filename or f"{name}.yaml")
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write_role


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def global_dir(tmp_path) -> Path:
    return tmp_path / "global-roles"


@pytest.fixture
def write_manifest(project):
    def _write_manifest(data: dict | str, filename: str = "toolgate.yaml") -> Path:
        path = project / filename
        text = data if isinstance(data, str) else yaml.safe_dump(data)
        path.write_text(text, encoding="utf-8")
        return path

    return _write_manifest
