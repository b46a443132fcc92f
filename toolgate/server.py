"""
MCP server: FastMCP v2 with a tool-filtering middleware.

This module wires the access controller into a running server:
- The tool catalog (tools.py), each entry bound to a handler below
- ToolFilterMiddleware: hides disabled tools from tools/list and rejects
  them on tools/call
- Role tools that let the agent inspect and switch its role mid-session
- Health and readiness HTTP endpoints
- Structured JSON logging for every access decision
- Streamable HTTP transport

Architecture:
    For every MCP request:

    1. tools/list: the middleware asks the server for the full tool list and
       keeps only the tools the current compiled filter enables
    2. tools/call: the middleware checks the same filter before the handler
       runs and raises PermissionError for a disabled tool, which FastMCP
       returns as an error result
    3. wp_load_role / wp_clear_role change the runtime role; the controller
       recompiles and swaps the filter, so the next list or call already
       sees the new tool set

    Listing and calling consult the same snapshot, so a client that guesses
    the name of a hidden tool is still refused.

Running the server:
    python -m toolgate.server

    This starts the server on http://0.0.0.0:8080 with:
    - MCP endpoint at /mcp (Streamable HTTP)
    - Health check at /health
    - Readiness check at /ready
"""

import json
import logging
import re
import sys
import uuid
from typing import Any, Callable, Sequence

from fastmcp import FastMCP
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from toolgate.access import AccessController
from toolgate.config import Settings, settings
from toolgate.site_client import SiteClient, SiteError
from toolgate.tools import build_registry

logger = logging.getLogger("toolgate")


# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# One JSON object per line on stdout, so log collectors can index the
# structured fields (role, tool, decision) without parsing free text.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-10-16 09:30:00,123", "level": "WARNING",
         "logger": "toolgate", "message": "Tool call denied",
         "tool": "wp_delete_post", "role": "content-author", "decision": "denied"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured fields passed via logger.info("msg", extra={"access_data": {...}})
        if hasattr(record, "access_data"):
            log_entry.update(record.access_data)
        return json.dumps(log_entry)


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)


# ---------------------------------------------------------------------------
# Tool Filtering Middleware
# ---------------------------------------------------------------------------
# FastMCP hooks:
# - on_list_tools: called for tools/list
# - on_call_tool: called for tools/call
#
# Both consult the controller's current compiled filter. Neither caches it:
# a role change between two requests must be visible on the second one.


class ToolFilterMiddleware(Middleware):
    """
    Enforces the compiled tool filter on every MCP tool request.

    - tools/list responses only contain enabled tools
    - tools/call requests for anything else are rejected, including names
      that are not in the catalog at all (fail closed)
    """

    def __init__(self, access: AccessController):
        self.access = access

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        """
        Filter the server's tool list down to the tools enabled right now.

        The agent never learns that a disabled tool exists.
        """
        request_id = str(uuid.uuid4())[:8]
        all_tools = await call_next(context)
        enabled_tools = [tool for tool in all_tools if self.access.is_enabled(tool.name)]

        logger.info(
            "Tool list filtered",
            extra={
                "access_data": {
                    "request_id": request_id,
                    "role": self.access.effective_role.name,
                    "total_tools": len(all_tools),
                    "enabled_tools": [tool.name for tool in enabled_tools],
                    "decision": "filtered",
                }
            },
        )
        return enabled_tools

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        """
        Refuse calls to disabled tools before their handler runs.

        A PermissionError is raised for refused calls, which FastMCP converts
        to an MCP error result.
        """
        request_id = str(uuid.uuid4())[:8]
        tool_name = context.message.name
        role_name = self.access.effective_role.name

        if not self.access.is_enabled(tool_name):
            steps = self.access.compiled_filter.explain(tool_name)
            logger.warning(
                "Tool call denied",
                extra={
                    "access_data": {
                        "request_id": request_id,
                        "tool": tool_name,
                        "role": role_name,
                        "decision": "denied",
                        "reason": steps[-1].source if steps else "not_enabled",
                    }
                },
            )
            raise PermissionError(
                f"Access denied: tool '{tool_name}' is not enabled "
                f"(active role: {role_name or 'none'})"
            )

        logger.info(
            "Tool call allowed",
            extra={
                "access_data": {
                    "request_id": request_id,
                    "tool": tool_name,
                    "role": role_name,
                    "decision": "allowed",
                }
            },
        )
        return await call_next(context)


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------
# Handlers return JSON text. Site failures come back as "Error: ..." text
# rather than exceptions; access failures never reach a handler.


def _render(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _site_call(action: Callable[[], Any]) -> str:
    try:
        return _render(action())
    except SiteError as e:
        logger.error("Site request failed: %s", e.message)
        return f"Error: {e.message}"


def _rendered(value: Any) -> str:
    """REST fields like title are {"rendered": "..."} objects; flatten them."""
    if isinstance(value, dict):
        return value.get("rendered", "")
    return value or ""


def _strip_tags(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", html)).strip()


def _post_summary(post: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": post.get("id"),
        "title": _rendered(post.get("title")),
        "status": post.get("status"),
        "link": post.get("link"),
        "date": post.get("date"),
        "modified": post.get("modified"),
    }


def seo_findings(post: dict[str, Any]) -> list[str]:
    """Basic on-page SEO checks for one post."""
    findings = []
    title = _strip_tags(_rendered(post.get("title")))
    if not 30 <= len(title) <= 60:
        findings.append(f"Title is {len(title)} characters; aim for 30-60.")
    if not _strip_tags(_rendered(post.get("excerpt"))):
        findings.append("No excerpt; search engines will pick their own snippet.")
    words = len(_strip_tags(_rendered(post.get("content"))).split())
    if words < 300:
        findings.append(f"Content is {words} words; aim for at least 300.")
    return findings


def review_findings(post: dict[str, Any]) -> list[str]:
    """Readability checks for one post."""
    findings = []
    html = _rendered(post.get("content"))
    paragraphs = [_strip_tags(p) for p in re.split(r"</p>", html) if _strip_tags(p)]
    for index, paragraph in enumerate(paragraphs, start=1):
        words = len(paragraph.split())
        if words > 150:
            findings.append(f"Paragraph {index} is {words} words; consider splitting it.")
    if len(_strip_tags(html).split()) > 500 and not re.search(r"<h[2-6][\s>]", html):
        findings.append("Long post without subheadings.")
    return findings


def _build_handlers(access: AccessController, site: SiteClient) -> dict[str, Callable]:
    """Map every tool name to its handler function."""

    # --- Core ---

    def get_site_overview() -> str:
        def overview():
            index = site.get("/")
            return {
                "name": index.get("name"),
                "description": index.get("description"),
                "url": index.get("url"),
                "namespaces": index.get("namespaces", []),
            }

        return _site_call(overview)

    def get_current_user() -> str:
        def current_user():
            user = site.get("/wp/v2/users/me", context="edit")
            capabilities = user.get("capabilities", {})
            return {
                "id": user.get("id"),
                "name": user.get("name"),
                "roles": user.get("roles", []),
                "capabilities": sorted(c for c, granted in capabilities.items() if granted),
            }

        return _site_call(current_user)

    # --- Content ---

    def list_posts(status: str = "publish", search: str = "", page: int = 1, per_page: int = 10) -> str:
        return _site_call(
            lambda: [
                _post_summary(post)
                for post in site.get(
                    "/wp/v2/posts",
                    status=status,
                    search=search or None,
                    page=page,
                    per_page=per_page,
                )
            ]
        )

    def get_post(post_id: int) -> str:
        def post():
            data = site.get(f"/wp/v2/posts/{post_id}", context="edit")
            return {**_post_summary(data), "content": _rendered(data.get("content"))}

        return _site_call(post)

    def create_post(title: str, content: str = "", status: str = "draft") -> str:
        return _site_call(
            lambda: _post_summary(
                site.post("/wp/v2/posts", {"title": title, "content": content, "status": status})
            )
        )

    def update_post(
        post_id: int,
        title: str | None = None,
        content: str | None = None,
        excerpt: str | None = None,
        status: str | None = None,
    ) -> str:
        changes = {"title": title, "content": content, "excerpt": excerpt, "status": status}
        return _site_call(lambda: _post_summary(site.post(f"/wp/v2/posts/{post_id}", changes)))

    def delete_post(post_id: int, force: bool = False) -> str:
        def delete():
            site.delete(f"/wp/v2/posts/{post_id}", force="true" if force else None)
            return {"id": post_id, "deleted": force, "trashed": not force}

        return _site_call(delete)

    def list_pages(page: int = 1, per_page: int = 10) -> str:
        return _site_call(
            lambda: [
                _post_summary(item)
                for item in site.get("/wp/v2/pages", page=page, per_page=per_page)
            ]
        )

    # --- Taxonomy and users ---

    def list_categories() -> str:
        return _site_call(
            lambda: [
                {"id": term["id"], "name": term["name"], "slug": term["slug"], "count": term.get("count")}
                for term in site.get("/wp/v2/categories", per_page=100)
            ]
        )

    def list_tags() -> str:
        return _site_call(
            lambda: [
                {"id": term["id"], "name": term["name"], "slug": term["slug"], "count": term.get("count")}
                for term in site.get("/wp/v2/tags", per_page=100)
            ]
        )

    def list_users(per_page: int = 10) -> str:
        return _site_call(
            lambda: [
                {"id": user["id"], "name": user["name"], "slug": user.get("slug")}
                for user in site.get("/wp/v2/users", per_page=per_page)
            ]
        )

    # --- Plugins and themes ---

    def list_plugins() -> str:
        return _site_call(
            lambda: [
                {"plugin": item["plugin"], "name": item.get("name"), "status": item.get("status")}
                for item in site.get("/wp/v2/plugins")
            ]
        )

    def activate_plugin(plugin: str) -> str:
        return _site_call(lambda: site.post(f"/wp/v2/plugins/{plugin}", {"status": "active"}))

    def deactivate_plugin(plugin: str) -> str:
        return _site_call(lambda: site.post(f"/wp/v2/plugins/{plugin}", {"status": "inactive"}))

    def list_themes() -> str:
        return _site_call(
            lambda: [
                {"stylesheet": item.get("stylesheet"), "name": _rendered(item.get("name")), "status": item.get("status")}
                for item in site.get("/wp/v2/themes")
            ]
        )

    # --- Settings ---

    def get_settings() -> str:
        return _site_call(lambda: site.get("/wp/v2/settings"))

    def update_settings(values: dict[str, Any]) -> str:
        return _site_call(lambda: site.post("/wp/v2/settings", values))

    # --- Batch and workflows ---

    def batch_update_posts(post_ids: list[int], status: str) -> str:
        updated, failed = [], []
        for post_id in post_ids:
            try:
                site.post(f"/wp/v2/posts/{post_id}", {"status": status})
                updated.append(post_id)
            except SiteError as e:
                failed.append({"id": post_id, "error": e.message})
        return _render({"status": status, "updated": updated, "failed": failed})

    def seo_audit(post_id: int) -> str:
        def audit():
            post = site.get(f"/wp/v2/posts/{post_id}", context="edit")
            findings = seo_findings(post)
            return {"id": post_id, "passed": not findings, "findings": findings}

        return _site_call(audit)

    def content_review(post_id: int) -> str:
        def review():
            post = site.get(f"/wp/v2/posts/{post_id}", context="edit")
            findings = review_findings(post)
            return {"id": post_id, "passed": not findings, "findings": findings}

        return _site_call(review)

    # --- Roles ---

    def list_roles() -> str:
        roles = [
            {
                "slug": role.name,
                "description": role.description,
                "source": role.source.value,
                "focus_areas": list(role.focus_areas),
                "tools": {
                    "allowed": list(role.tools.allowed) if role.tools.allowed is not None else None,
                    "denied": list(role.tools.denied),
                },
            }
            for role in (access.store.get(name) for name in access.store.names())
        ]
        return _render(
            {
                "roles": roles,
                "active_role": access.effective_role.name,
                "errors": access.store.errors,
            }
        )

    def get_active_role() -> str:
        effective = access.effective_role
        return _render(
            {
                "role": effective.name,
                "source": effective.source,
                "description": effective.role.description if effective.role else None,
                "runtime_override": access.runtime_state.get_role(),
                "enabled_tools": len(access.compiled_filter.enabled_tools),
                "warnings": access.get_warnings(),
            }
        )

    def load_role(slug: str) -> str:
        result = access.set_runtime_role(slug, "tool")
        if not result.success:
            return f"Error: {result.error}"
        role = result.role
        return _render(
            {
                "loaded": role.name,
                "description": role.description,
                "context": role.context,
                "focus_areas": list(role.focus_areas),
                "avoid": list(role.avoid),
                "tools": {
                    "allowed": list(role.tools.allowed) if role.tools.allowed is not None else None,
                    "denied": list(role.tools.denied),
                },
                "enabled_tools": [tool.name for tool in access.list_enabled()],
            }
        )

    def clear_role() -> str:
        previous = access.runtime_state.get_role()
        access.set_runtime_role(None, "tool")
        return _render(
            {
                "cleared": previous,
                "effective_role": access.effective_role.name,
                "enabled_tools": len(access.compiled_filter.enabled_tools),
            }
        )

    def explain_tool_access(tool_name: str) -> str:
        if tool_name not in access.registry:
            return f"Error: Unknown tool: {tool_name}"
        return _render(
            {
                "tool": tool_name,
                "enabled": access.is_enabled(tool_name),
                "steps": [
                    {"source": step.source, "action": step.action, "pattern": step.pattern}
                    for step in access.compiled_filter.explain(tool_name)
                ],
            }
        )

    return {
        "wp_get_site_overview": get_site_overview,
        "wp_get_current_user": get_current_user,
        "wp_list_posts": list_posts,
        "wp_get_post": get_post,
        "wp_create_post": create_post,
        "wp_update_post": update_post,
        "wp_delete_post": delete_post,
        "wp_list_pages": list_pages,
        "wp_list_categories": list_categories,
        "wp_list_tags": list_tags,
        "wp_list_users": list_users,
        "wp_list_plugins": list_plugins,
        "wp_activate_plugin": activate_plugin,
        "wp_deactivate_plugin": deactivate_plugin,
        "wp_list_themes": list_themes,
        "wp_get_settings": get_settings,
        "wp_update_settings": update_settings,
        "wp_batch_update_posts": batch_update_posts,
        "wp_seo_audit": seo_audit,
        "wp_content_review": content_review,
        "wp_list_roles": list_roles,
        "wp_get_active_role": get_active_role,
        "wp_load_role": load_role,
        "wp_clear_role": clear_role,
        "wp_explain_tool_access": explain_tool_access,
    }


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(access: AccessController, site: SiteClient) -> FastMCP:
    """
    Build the FastMCP server for one access controller.

    Raises:
        RuntimeError: if a catalog entry has no handler
    """
    mcp = FastMCP(
        name="toolgate",
        instructions=(
            "Content site tools with role-based access. Call wp_list_roles to see "
            "the available roles and wp_load_role to adopt one; the tool list "
            "changes to match the active role."
        ),
        middleware=[ToolFilterMiddleware(access)],
    )

    handlers = _build_handlers(access, site)
    missing = [descriptor.name for descriptor in access.registry if descriptor.name not in handlers]
    if missing:
        raise RuntimeError(f"No handler for catalog tools: {', '.join(missing)}")

    for descriptor in access.registry:
        mcp.add_tool(
            Tool.from_function(
                handlers[descriptor.name],
                name=descriptor.name,
                description=descriptor.description,
                tags={descriptor.category.value},
            )
        )

    # Plain HTTP endpoints for orchestration probes; not part of MCP and not
    # subject to the tool filter.

    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        """Liveness probe: is the server process alive and responsive?"""
        return JSONResponse({"status": "healthy"})

    @mcp.custom_route("/ready", methods=["GET"])
    async def readiness_check(request: Request) -> Response:
        """Readiness probe: is the tool filter built from a valid manifest?"""
        if access.manifest.error:
            return JSONResponse(
                {"status": "not_ready", "reason": "manifest invalid", "detail": access.manifest.error},
                status_code=503,
            )
        return JSONResponse(
            {
                "status": "ready",
                "role": access.effective_role.name,
                "enabled_tools": len(access.compiled_filter.enabled_tools),
            }
        )

    return mcp


def build_access(config: Settings, site: SiteClient) -> AccessController:
    """Create the access controller for the configured project."""
    capabilities: list[str] = []
    if site.configured:
        try:
            capabilities = site.fetch_capabilities()
        except SiteError as e:
            logger.warning("Capability detection failed: %s", e.message)

    return AccessController.from_project(
        config.project_root,
        build_registry(),
        global_dir=config.global_roles_dir,
        feature_flags=config.features,
        startup_role=config.role,
        capabilities=capabilities,
    )


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def main() -> None:
    configure_logging(settings.log_level)
    site = SiteClient(
        settings.site_url,
        settings.site_user,
        settings.site_app_password,
        timeout=settings.request_timeout,
    )
    access = build_access(settings, site)
    mcp = create_server(access, site)

    logger.info(
        "Starting MCP server on %s:%d (transport=streamable-http, role=%s)",
        settings.host,
        settings.port,
        access.effective_role.name or "none",
    )
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
