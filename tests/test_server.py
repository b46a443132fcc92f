"""
Integration tests for the MCP server (toolgate/server.py).

These tests exercise the full path through the MCP protocol:
client -> FastMCP -> ToolFilterMiddleware -> tool handler.

Test approach:
    FastMCP's Client can connect to a server object directly (in-memory
    transport), so every request still goes through the middleware chain
    without starting an HTTP server. The remote site is an
    httpx.MockTransport serving a couple of canned REST responses.

    The HTTP-only routes (/health, /ready) are tested through the server's
    ASGI app with httpx.ASGITransport.
"""

import json
import logging

import httpx
import pytest
from fastmcp import Client

from toolgate.access import AccessController
from toolgate.config import Settings
from toolgate.server import (
    JSONLogFormatter,
    build_access,
    create_server,
    review_findings,
    seo_findings,
)
from toolgate.site_client import SiteClient
from toolgate.tools import CATALOG, build_registry


def site_handler(request: httpx.Request) -> httpx.Response:
    """Canned REST responses for the mock site."""
    if request.url.path == "/wp-json/wp/v2/posts" and request.method == "GET":
        return httpx.Response(
            200,
            json=[
                {
                    "id": 1,
                    "title": {"rendered": "Hello world"},
                    "status": "publish",
                    "link": "https://example.test/hello-world",
                    "date": "2026-10-01T09:00:00",
                    "modified": "2026-10-02T09:00:00",
                }
            ],
        )
    if request.url.path.startswith("/wp-json/wp/v2/posts/") and request.method == "DELETE":
        return httpx.Response(200, json={"deleted": True})
    return httpx.Response(404, json={"code": "rest_no_route", "message": "No route was found."})


@pytest.fixture
def site() -> SiteClient:
    return SiteClient("https://example.test", transport=httpx.MockTransport(site_handler))


@pytest.fixture
def make_server(project, global_dir, site, write_manifest):
    """
    Factory fixture returning (server, access) for a project set up by the test.

    Usage in tests:
        server, access = make_server(manifest={"roles": {"active": "content-author"}})
    """

    def _make_server(manifest: dict | None = None, **options):
        if manifest is not None:
            write_manifest(manifest)
        access = AccessController.from_project(
            project, build_registry(), global_dir=global_dir, **options
        )
        return create_server(access, site), access

    return _make_server


def tool_names(tools) -> set[str]:
    return {tool.name for tool in tools}


def result_json(result):
    return json.loads(result.content[0].text)


# ---------------------------------------------------------------------------
# Test: Tool list filtering
# ---------------------------------------------------------------------------


class TestToolListFiltering:
    """Tests for on_list_tools filtering."""

    async def test_no_role_lists_all_unflagged_tools(self, make_server):
        server, _ = make_server()

        async with Client(server) as client:
            tools = await client.list_tools()

        assert tool_names(tools) == {tool.name for tool in CATALOG if tool.feature_flag is None}

    async def test_feature_flag_reveals_tool(self, make_server):
        server, _ = make_server(manifest={"features": {"WP_SEO_AUDIT_ENABLED": True}})

        async with Client(server) as client:
            tools = await client.list_tools()

        assert "wp_seo_audit" in tool_names(tools)
        assert "wp_content_review" not in tool_names(tools)

    async def test_config_role_restricts_list(self, make_server):
        server, _ = make_server(manifest={"roles": {"active": "content-author"}})

        async with Client(server) as client:
            names = tool_names(await client.list_tools())

        assert "wp_create_post" in names
        assert "wp_list_categories" in names
        assert "wp_load_role" in names
        assert "wp_delete_post" not in names
        assert "wp_list_plugins" not in names

    async def test_invalid_manifest_lists_nothing(self, make_server, write_manifest):
        write_manifest("tools:\n  enable: [core:*]\n")
        server, _ = make_server()

        async with Client(server) as client:
            tools = await client.list_tools()

        assert tools == []


# ---------------------------------------------------------------------------
# Test: Tool call authorization
# ---------------------------------------------------------------------------


class TestToolCallAuthorization:
    """Tests for on_call_tool enforcement."""

    async def test_enabled_tool_runs(self, make_server):
        server, _ = make_server()

        async with Client(server) as client:
            result = await client.call_tool_mcp("wp_list_posts", {})

        assert not result.isError
        posts = result_json(result)
        assert posts[0]["title"] == "Hello world"

    async def test_hidden_tool_call_is_rejected(self, make_server):
        """Knowing a tool's name is not enough to call it."""
        server, _ = make_server(manifest={"roles": {"active": "content-author"}})

        async with Client(server) as client:
            result = await client.call_tool_mcp("wp_delete_post", {"post_id": 1})

        assert result.isError
        assert "not enabled" in result.content[0].text

    async def test_flagged_tool_call_is_rejected(self, make_server):
        server, _ = make_server()

        async with Client(server) as client:
            result = await client.call_tool_mcp("wp_seo_audit", {"post_id": 1})

        assert result.isError

    async def test_site_error_returned_as_text(self, make_server):
        server, _ = make_server()

        async with Client(server) as client:
            result = await client.call_tool_mcp("wp_get_post", {"post_id": 99})

        assert result.content[0].text.startswith("Error: GET /wp/v2/posts/99 returned 404")


# ---------------------------------------------------------------------------
# Test: Role tools
# ---------------------------------------------------------------------------


class TestRoleTools:
    """Tests for switching roles mid-session."""

    async def test_load_role_changes_visible_tools(self, make_server):
        server, access = make_server()

        async with Client(server) as client:
            before = tool_names(await client.list_tools())
            loaded = result_json(await client.call_tool_mcp("wp_load_role", {"slug": "content-author"}))
            after = tool_names(await client.list_tools())
            denied = await client.call_tool_mcp("wp_delete_post", {"post_id": 1})

        assert "wp_delete_post" in before
        assert "wp_delete_post" not in after
        assert loaded["loaded"] == "content-author"
        assert "wp_delete_post" in loaded["tools"]["denied"]
        assert set(loaded["enabled_tools"]) == after
        assert denied.isError
        assert access.effective_role.source == "runtime"

    async def test_load_unknown_role_reports_error(self, make_server):
        server, access = make_server()

        async with Client(server) as client:
            result = await client.call_tool_mcp("wp_load_role", {"slug": "not-a-role"})

        assert result.content[0].text.startswith('Error: Role not found: "not-a-role"')
        assert access.effective_role.role is None

    async def test_clear_role_restores_tools(self, make_server):
        server, _ = make_server()

        async with Client(server) as client:
            await client.call_tool_mcp("wp_load_role", {"slug": "content-author"})
            cleared = result_json(await client.call_tool_mcp("wp_clear_role", {}))
            names = tool_names(await client.list_tools())

        assert cleared["cleared"] == "content-author"
        assert cleared["effective_role"] is None
        assert "wp_delete_post" in names

    async def test_list_and_active_role(self, make_server):
        server, _ = make_server(manifest={"roles": {"active": "content-editor"}})

        async with Client(server) as client:
            roles = result_json(await client.call_tool_mcp("wp_list_roles", {}))
            active = result_json(await client.call_tool_mcp("wp_get_active_role", {}))

        slugs = [role["slug"] for role in roles["roles"]]
        assert "seo-specialist" in slugs
        assert slugs == sorted(slugs)
        assert roles["active_role"] == "content-editor"
        assert active["role"] == "content-editor"
        assert active["source"] == "config"
        assert active["runtime_override"] is None

    async def test_explain_tool_access(self, make_server):
        server, _ = make_server(manifest={"tools": {"disabled": ["wp_delete_post"]}})

        async with Client(server) as client:
            explained = result_json(
                await client.call_tool_mcp("wp_explain_tool_access", {"tool_name": "wp_delete_post"})
            )

        assert explained["enabled"] is False
        assert explained["steps"] == [
            {"source": "manifest-disabled", "action": "deny", "pattern": "wp_delete_post"}
        ]


# ---------------------------------------------------------------------------
# Test: HTTP routes and helpers
# ---------------------------------------------------------------------------


class TestHttpRoutes:
    """Tests for the health and readiness endpoints."""

    async def test_health(self, make_server):
        server, _ = make_server()
        transport = httpx.ASGITransport(app=server.http_app())

        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_ready_reports_role(self, make_server):
        server, _ = make_server(manifest={"roles": {"active": "developer"}})
        transport = httpx.ASGITransport(app=server.http_app())

        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json()["role"] == "developer"

    async def test_not_ready_with_broken_manifest(self, make_server, write_manifest):
        write_manifest("schema_version: 99\n")
        server, _ = make_server()
        transport = httpx.ASGITransport(app=server.http_app())

        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "manifest invalid"


class TestServerHelpers:
    def test_json_log_formatter_merges_access_data(self):
        record = logging.LogRecord("toolgate", logging.WARNING, __file__, 1, "Tool call denied", None, None)
        record.access_data = {"tool": "wp_delete_post", "decision": "denied"}

        entry = json.loads(JSONLogFormatter().format(record))

        assert entry["message"] == "Tool call denied"
        assert entry["tool"] == "wp_delete_post"
        assert entry["decision"] == "denied"

    def test_seo_findings(self):
        post = {
            "title": {"rendered": "Short"},
            "excerpt": {"rendered": ""},
            "content": {"rendered": "<p>Too few words.</p>"},
        }

        findings = seo_findings(post)

        assert len(findings) == 3
        assert findings[0] == "Title is 5 characters; aim for 30-60."

    def test_review_flags_long_paragraph(self):
        long_paragraph = "<p>" + " ".join(["word"] * 160) + "</p>"

        findings = review_findings({"content": {"rendered": long_paragraph + "<p>Short.</p>"}})

        assert findings == ["Paragraph 1 is 160 words; consider splitting it."]

    def test_every_catalog_tool_has_a_handler(self, project, global_dir, site):
        access = AccessController.from_project(project, build_registry(), global_dir=global_dir)

        create_server(access, site)

    def test_startup_survives_non_json_capability_response(self, project, global_dir):
        """A maintenance page in place of users/me must not stop the server from starting."""
        site = SiteClient(
            "https://example.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>maintenance</html>")
            ),
        )
        config = Settings(project_root=project, global_roles_dir=global_dir)

        access = build_access(config, site)

        assert access.capabilities == ()
        assert access.is_enabled("wp_get_post")
