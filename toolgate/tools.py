"""
The tool catalog: every tool the server can expose.

This module is the registry side of access control. It says what exists, its
category and its feature flag. It says nothing about who may call what: that
is decided per session by the compiled filter (tool_filter.py) from the
manifest, the active role and the feature flags.

server.py binds a handler to each name below; a catalog entry without a
handler is a startup error, so this list and the server cannot drift apart.

Feature flags (all default to off):
    WP_BATCH_ENABLED             batch edits across many posts
    WP_SEO_AUDIT_ENABLED         wp_seo_audit
    WP_CONTENT_REVIEWER_ENABLED  wp_content_review
"""

from toolgate.registry import ToolCategory, ToolDescriptor, ToolRegistry

BATCH_FLAG = "WP_BATCH_ENABLED"
SEO_AUDIT_FLAG = "WP_SEO_AUDIT_ENABLED"
CONTENT_REVIEWER_FLAG = "WP_CONTENT_REVIEWER_ENABLED"

CATALOG: tuple[ToolDescriptor, ...] = (
    # --- Core introspection ---
    ToolDescriptor(
        "wp_get_site_overview",
        ToolCategory.CORE,
        description="Summarize the site: name, URL, description and available REST namespaces.",
    ),
    ToolDescriptor(
        "wp_get_current_user",
        ToolCategory.CORE,
        description="Show the authenticated site user, their roles and capabilities.",
    ),
    # --- Content ---
    ToolDescriptor("wp_list_posts", ToolCategory.CONTENT, description="List posts."),
    ToolDescriptor("wp_get_post", ToolCategory.CONTENT, description="Get one post by ID."),
    ToolDescriptor("wp_create_post", ToolCategory.CONTENT, description="Create a post."),
    ToolDescriptor("wp_update_post", ToolCategory.CONTENT, description="Update a post."),
    ToolDescriptor(
        "wp_delete_post",
        ToolCategory.CONTENT,
        description="Move a post to the trash, or delete it permanently with force=true.",
    ),
    ToolDescriptor("wp_list_pages", ToolCategory.CONTENT, description="List pages."),
    # --- Taxonomy ---
    ToolDescriptor("wp_list_categories", ToolCategory.TAXONOMY, description="List categories."),
    ToolDescriptor("wp_list_tags", ToolCategory.TAXONOMY, description="List tags."),
    # --- Users ---
    ToolDescriptor("wp_list_users", ToolCategory.USERS, description="List site users."),
    # --- Plugins and themes ---
    ToolDescriptor("wp_list_plugins", ToolCategory.PLUGINS, description="List installed plugins."),
    ToolDescriptor("wp_activate_plugin", ToolCategory.PLUGINS, description="Activate a plugin."),
    ToolDescriptor(
        "wp_deactivate_plugin", ToolCategory.PLUGINS, description="Deactivate a plugin."
    ),
    ToolDescriptor("wp_list_themes", ToolCategory.THEMES, description="List installed themes."),
    # --- Settings ---
    ToolDescriptor("wp_get_settings", ToolCategory.SETTINGS, description="Read site settings."),
    ToolDescriptor(
        "wp_update_settings", ToolCategory.SETTINGS, description="Change site settings."
    ),
    # --- Batch jobs ---
    ToolDescriptor(
        "wp_batch_update_posts",
        ToolCategory.BATCH,
        feature_flag=BATCH_FLAG,
        description="Set the status of many posts at once.",
    ),
    # --- Workflows ---
    ToolDescriptor(
        "wp_seo_audit",
        ToolCategory.WORKFLOWS,
        feature_flag=SEO_AUDIT_FLAG,
        description="Check a post's title, excerpt and length against basic SEO rules.",
    ),
    ToolDescriptor(
        "wp_content_review",
        ToolCategory.WORKFLOWS,
        feature_flag=CONTENT_REVIEWER_FLAG,
        description="Flag readability problems in a post: long paragraphs, missing headings.",
    ),
    # --- Roles ---
    ToolDescriptor(
        "wp_list_roles",
        ToolCategory.ROLES,
        description="List available agent roles with their focus areas and tool restrictions.",
    ),
    ToolDescriptor(
        "wp_get_active_role",
        ToolCategory.ROLES,
        description="Show the active role, how it was chosen, and how many tools it enables.",
    ),
    ToolDescriptor(
        "wp_load_role",
        ToolCategory.ROLES,
        description=(
            "Activate a role for this session by slug. Its tool restrictions apply "
            "immediately; returns the role's context, focus areas and tool lists."
        ),
    ),
    ToolDescriptor(
        "wp_clear_role",
        ToolCategory.ROLES,
        description="Deactivate the session's runtime role override.",
    ),
    ToolDescriptor(
        "wp_explain_tool_access",
        ToolCategory.ROLES,
        description="Explain which rules enabled or disabled a tool in this session.",
    ),
)


def build_registry() -> ToolRegistry:
    return ToolRegistry(CATALOG)
