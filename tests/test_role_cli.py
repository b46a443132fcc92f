"""
Tests for the role CLI (scripts/role.py).

The CLI is called through main(argv) with an explicit project root and
global role directory, and its stdout is captured with capsys.
"""

import json

import pytest

from scripts.role import main
from toolgate.runtime_state import STATE_FILE_NAME


@pytest.fixture
def run(project, global_dir, capsys):
    """Run the CLI against the test project and return (exit_code, stdout)."""

    def _run(*args: str) -> tuple[int, str]:
        code = main(["--project-root", str(project), "--global-dir", str(global_dir), *args])
        return code, capsys.readouterr().out

    return _run


class TestRoleCli:
    """Tests for list / show / use / clear."""

    def test_list_json(self, run, write_role, project):
        write_role(project / "roles", "reviewer")

        code, out = run("--json", "list")

        data = json.loads(out)
        assert code == 0
        assert data["success"] is True
        assert data["command"] == "role list"
        slugs = [role["slug"] for role in data["data"]["roles"]]
        assert "reviewer" in slugs
        assert "content-editor" in slugs
        assert data["data"]["sources"]["project"] == 1
        assert data["data"]["active"] is None

    def test_list_is_the_default_command(self, run):
        code, out = run()

        assert code == 0
        assert "developer" in out
        assert "Total:" in out

    def test_show_role(self, run):
        code, out = run("show", "content-author")

        assert code == 0
        assert out.startswith("content-author:")
        assert "Tools denied:  wp_delete_post" in out

    def test_show_unknown_role(self, run):
        code, out = run("--json", "show", "ghost")

        data = json.loads(out)
        assert code == 1
        assert data["success"] is False
        assert data["error"].startswith('Role not found: "ghost"')

    def test_use_writes_marker(self, run, project):
        code, out = run("use", "seo-specialist")

        assert code == 0
        assert "Active role set: seo-specialist" in out
        marker = json.loads((project / STATE_FILE_NAME).read_text(encoding="utf-8"))
        assert marker["active_role"] == "seo-specialist"
        assert marker["role_source"] == "cli"

    def test_use_unknown_role_fails_without_marker(self, project, global_dir, capsys):
        code = main(
            ["--project-root", str(project), "--global-dir", str(global_dir), "use", "ghost"]
        )

        assert code == 1
        assert "Role not found" in capsys.readouterr().err
        assert not (project / STATE_FILE_NAME).exists()

    def test_list_marks_active_role(self, run):
        run("use", "developer")

        _, out = run("list")

        assert "Active role: developer" in out
        assert "-> developer" in out

    def test_clear(self, run, project):
        run("use", "developer")

        code, out = run("--json", "clear")

        data = json.loads(out)
        assert code == 0
        assert data["data"]["previous_role"] == "developer"
        assert not (project / STATE_FILE_NAME).exists()
