"""
CLI for inspecting roles and setting the project's active role.

The active role set here is written to the project's .toolgate-state.json
marker, so the next server start (or the next CLI call) picks it up. The
server's own wp_load_role tool changes the role for one session only and
never touches the marker.

Usage examples:

    # List roles visible to the project in the current directory
    python -m scripts.role list

    # Show one role, merged across bundled, global and project tiers
    python -m scripts.role show content-editor

    # Activate a role for subsequent sessions, then clear it again
    python -m scripts.role use seo-specialist
    python -m scripts.role clear

    # Machine-readable output for scripts
    python -m scripts.role --json list

Exit codes: 0 on success, 1 when a role is unknown.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from toolgate.roles import LoadedRole, RoleStore
from toolgate.runtime_state import RuntimeRoleState


def _role_details(role: LoadedRole) -> dict[str, Any]:
    return {
        "slug": role.name,
        "description": role.description,
        "source": role.source.value,
        "source_path": role.source_path,
        "context": role.context,
        "focus_areas": list(role.focus_areas),
        "avoid": list(role.avoid),
        "tools": {
            "allowed": list(role.tools.allowed) if role.tools.allowed is not None else None,
            "denied": list(role.tools.denied),
        },
        "tags": list(role.tags),
        "priority": role.priority,
    }


def _emit(as_json: bool, command: str, data: dict[str, Any], lines: list[str]) -> None:
    if as_json:
        print(json.dumps({"success": True, "command": command, "data": data}, indent=2))
    else:
        print("\n".join(lines))


def _fail(as_json: bool, command: str, message: str) -> int:
    if as_json:
        print(json.dumps({"success": False, "command": command, "error": message}, indent=2))
    else:
        print(f"Error: {message}", file=sys.stderr)
    return 1


def cmd_list(store: RoleStore, state: RuntimeRoleState, as_json: bool) -> int:
    discovered = store.load()
    active = state.get_role()
    roles = [store.get(name) for name in store.names()]

    lines = []
    if active:
        lines += [f"Active role: {active}", ""]
    for role in roles:
        marker = "->" if role.name == active else "  "
        lines.append(f"{marker} {role.name}")
        lines.append(f"     {role.description}")
        lines.append(f"     Source: {role.source.value}")
    lines.append("")
    lines.append(f"Total: {len(roles)}")
    for error in discovered.errors:
        lines.append(f"Skipped: {error}")

    _emit(
        as_json,
        "role list",
        {
            "total": len(roles),
            "active": active,
            "roles": [
                {
                    "slug": role.name,
                    "description": role.description,
                    "source": role.source.value,
                    "focus_areas": list(role.focus_areas),
                }
                for role in roles
            ],
            "sources": {tier: len(names) for tier, names in discovered.sources.items()},
            "errors": discovered.errors,
        },
        lines,
    )
    return 0


def cmd_show(store: RoleStore, slug: str, as_json: bool) -> int:
    role = store.get(slug)
    if role is None:
        available = ", ".join(store.names()) or "(none)"
        return _fail(as_json, "role show", f'Role not found: "{slug}". Available roles: {available}')

    details = _role_details(role)
    allowed = details["tools"]["allowed"]
    lines = [
        f"{role.name}: {role.description}",
        f"Source:  {role.source.value} ({role.source_path})",
        "",
        role.context.strip(),
        "",
        f"Focus areas:   {', '.join(role.focus_areas) or '-'}",
        f"Avoid:         {', '.join(role.avoid) or '-'}",
        f"Tools allowed: {', '.join(allowed) if allowed is not None else '(all)'}",
        f"Tools denied:  {', '.join(role.tools.denied) or '-'}",
    ]
    _emit(as_json, "role show", details, lines)
    return 0


def cmd_use(state: RuntimeRoleState, slug: str, as_json: bool) -> int:
    result = state.set_role(slug, "cli")
    if not result.success:
        return _fail(as_json, "role use", result.error)

    _emit(
        as_json,
        "role use",
        {"active_role": slug, "description": result.role.description},
        [
            f"Active role set: {slug}",
            f"  {result.role.description}",
            "",
            'Use "role clear" to reset to default behavior.',
        ],
    )
    return 0


def cmd_clear(state: RuntimeRoleState, as_json: bool) -> int:
    previous = state.get_role()
    state.clear()
    message = f"Role cleared: {previous}" if previous else "No active role to clear."
    _emit(
        as_json,
        "role clear",
        {"previous_role": previous, "message": "Active role cleared"},
        [message, "Tool filtering will now use manifest defaults."],
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Inspect roles and set the active role for a project.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s list
  %(prog)s show content-editor
  %(prog)s use seo-specialist
  %(prog)s clear
        """,
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path("."),
        help="Project directory holding roles/ and the state marker (default: .)",
    )
    parser.add_argument(
        "--global-dir",
        type=Path,
        default=None,
        help="Per-user role directory (default: ~/.toolgate/roles)",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON")

    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("list", help="List available roles")
    show = subcommands.add_parser("show", help="Show role details")
    show.add_argument("slug")
    use = subcommands.add_parser("use", help="Set the active role")
    use.add_argument("slug")
    subcommands.add_parser("clear", help="Clear the active role")

    args = parser.parse_args(argv)

    store = RoleStore(args.project_root, global_dir=args.global_dir)
    state = RuntimeRoleState(store)
    state.initialize(args.project_root)

    if args.command == "show":
        return cmd_show(store, args.slug, args.json)
    if args.command == "use":
        return cmd_use(state, args.slug, args.json)
    if args.command == "clear":
        return cmd_clear(state, args.json)
    return cmd_list(store, state, args.json)


if __name__ == "__main__":
    sys.exit(main())
