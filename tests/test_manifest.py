"""
Tests for project manifest loading (toolgate/manifest.py).

load_manifest() distinguishes three cases and never raises:

1. No manifest file: defaults apply
2. A valid manifest: parsed into ProjectManifest
3. A broken manifest: reported through ManifestLoadResult.error
"""

import json

import pytest

from toolgate.manifest import (
    ManifestError,
    ManifestToolsConfig,
    find_manifest,
    load_manifest,
    parse_manifest,
)


class TestParseManifest:
    """Tests for parse_manifest()."""

    def test_full_manifest(self):
        text = """
schema_version: 1
tools:
  enabled: ["core:*", "content:*"]
  disabled: [wp_delete_post]
  overrides:
    tools_allow: [wp_list_plugins]
    tools_deny: ["wp_create_*"]
roles:
  active: content-editor
  auto_detect: false
  overrides:
    tools_deny: [wp_update_post]
features:
  WP_SEO_AUDIT_ENABLED: true
"""
        manifest = parse_manifest(text, "toolgate.yaml")

        assert manifest.tools.enabled == ("core:*", "content:*")
        assert manifest.tools.disabled == ("wp_delete_post",)
        assert manifest.tools.overrides.tools_allow == ("wp_list_plugins",)
        assert manifest.tools.overrides.tools_deny == ("wp_create_*",)
        assert manifest.roles.active == "content-editor"
        assert manifest.roles.auto_detect is False
        assert manifest.roles.overrides.tools_deny == ("wp_update_post",)
        assert manifest.features == {"WP_SEO_AUDIT_ENABLED": True}

    def test_empty_file_gives_defaults(self):
        manifest = parse_manifest("", "toolgate.yaml")

        assert manifest.tools.enabled is None
        assert manifest.roles.auto_detect is True
        assert manifest.features == {}

    def test_absent_enabled_differs_from_empty_enabled(self):
        absent = parse_manifest("tools: {disabled: [x]}", "toolgate.yaml")
        empty = parse_manifest("tools: {enabled: []}", "toolgate.yaml")

        assert absent.tools.enabled is None
        assert empty.tools.enabled == ()

    def test_json_manifest(self):
        text = json.dumps({"tools": {"disabled": ["wp_delete_post"]}})

        manifest = parse_manifest(text, "toolgate.json")

        assert manifest.tools.disabled == ("wp_delete_post",)

    def test_unknown_top_level_sections_ignored(self):
        manifest = parse_manifest("deploy: {target: staging}\n", "toolgate.yaml")

        assert manifest.tools == ManifestToolsConfig()

    def test_typo_inside_tools_rejected(self):
        with pytest.raises(ManifestError, match='Invalid "tools.disable"'):
            parse_manifest("tools:\n  disable: [wp_delete_post]\n", "toolgate.yaml")

    def test_syntax_error(self):
        with pytest.raises(ManifestError, match="Failed to parse manifest"):
            parse_manifest("tools: [unclosed\n", "toolgate.yaml")

    def test_non_mapping_rejected(self):
        with pytest.raises(ManifestError, match="must be a mapping"):
            parse_manifest("- a\n- b\n", "toolgate.yaml")

    def test_newer_schema_version_rejected(self):
        with pytest.raises(ManifestError, match="Unsupported manifest schema_version: 2"):
            parse_manifest("schema_version: 2\n", "toolgate.yaml")


class TestLoadManifest:
    """Tests for load_manifest() on a project directory."""

    def test_no_manifest(self, project):
        result = load_manifest(project)

        assert result.found is False
        assert result.manifest is None
        assert result.error is None

    def test_valid_manifest(self, project, write_manifest):
        path = write_manifest({"tools": {"disabled": ["wp_delete_post"]}})

        result = load_manifest(project)

        assert result.found is True
        assert result.path == str(path)
        assert result.manifest.tools.disabled == ("wp_delete_post",)

    def test_broken_manifest_reports_error(self, project, write_manifest):
        write_manifest("tools:\n  enabled: 5\n")

        result = load_manifest(project)

        assert result.found is True
        assert result.manifest is None
        assert 'Invalid "tools.enabled"' in result.error

    def test_undecodable_manifest_reports_error(self, project):
        (project / "toolgate.yaml").write_bytes(b"\xff\xfe")

        result = load_manifest(project)

        assert result.found is True
        assert result.manifest is None
        assert result.error.startswith("Failed to read manifest")

    def test_yaml_preferred_over_json(self, project, write_manifest):
        write_manifest({"tools": {}}, filename="toolgate.json")
        write_manifest({"tools": {}}, filename="toolgate.yaml")

        assert find_manifest(project).name == "toolgate.yaml"
