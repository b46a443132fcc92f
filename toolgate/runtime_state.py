"""
Runtime role state: the session's role override.

The override can be set three ways:

    cli          `scripts/role.py use <slug>` or TOOLGATE_ROLE at startup
    state-file   adopted from the marker file when the state is initialized
    tool         the agent called wp_load_role during the conversation

CLI and state-file changes are mirrored to a small marker file in the project
root so that the next CLI invocation or server start continues with the same
role:

    .toolgate-state.json
    {"active_role": "content-editor", "role_source": "cli",
     "modified_at": "2026-10-16T09:30:00+00:00"}

Tool-sourced changes are kept in memory only; they should not outlive the
conversation that made them. The marker file is best effort: read, write and
delete failures are logged and ignored, and a marker naming a role that no
longer exists is ignored. Concurrent writers are not locked against each
other; the last write wins.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from toolgate.roles import LoadedRole, RoleStore

logger = logging.getLogger(__name__)

STATE_FILE_NAME = ".toolgate-state.json"

StateSource = Literal["cli", "tool", "state-file"]
PERSISTED_SOURCES = ("cli", "state-file")


@dataclass(frozen=True)
class RuntimeRoleStateData:
    active_role: str | None = None
    source: StateSource | None = None
    set_at: datetime | None = None


@dataclass(frozen=True)
class RoleStateResult:
    success: bool
    error: str | None = None
    role: LoadedRole | None = None


class RuntimeRoleState:
    """
    Mutable holder of the runtime role override for one project.

    Construct it explicitly and pass it to whatever needs it; call
    initialize(project_root) once to bind it to a project and adopt any
    marker file found there.
    """

    def __init__(self, store: RoleStore):
        self._store = store
        self._state = RuntimeRoleStateData()
        self._project_root: Path | None = None

    def initialize(self, project_root: Path | str) -> None:
        self._project_root = Path(project_root)
        self._load_from_file()

    @property
    def state_file(self) -> Path | None:
        if self._project_root is None:
            return None
        return self._project_root / STATE_FILE_NAME

    def set_role(self, slug: str | None, source: StateSource) -> RoleStateResult:
        """
        Set (or with None, unset) the runtime override.

        An unknown slug is rejected and the current state is left untouched.

        Returns:
            RoleStateResult with the newly active role on success
        """
        role = None
        if slug is not None:
            role = self._store.get(slug)
            if role is None:
                available = ", ".join(self._store.names()) or "(none)"
                return RoleStateResult(
                    success=False,
                    error=f'Role not found: "{slug}". Available roles: {available}',
                )

        self._state = RuntimeRoleStateData(
            active_role=slug,
            source=source if slug is not None else None,
            set_at=datetime.now(timezone.utc) if slug is not None else None,
        )
        if source in PERSISTED_SOURCES:
            self._save_to_file(source)
        return RoleStateResult(success=True, role=role)

    def get_role(self) -> str | None:
        return self._state.active_role

    def get_loaded_role(self) -> LoadedRole | None:
        if self._state.active_role is None:
            return None
        return self._store.get(self._state.active_role)

    def get_source(self) -> StateSource | None:
        return self._state.source

    def get_state(self) -> RuntimeRoleStateData:
        return self._state

    def clear(self) -> None:
        """Drop the override and remove the marker file."""
        self._state = RuntimeRoleStateData()
        self._delete_file()

    # -----------------------------------------------------------------------
    # Marker file
    # -----------------------------------------------------------------------

    def _load_from_file(self) -> None:
        path = self.state_file
        if path is None or not path.is_file():
            return

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug("Ignoring unreadable state file %s: %s", path, e)
            return

        if not isinstance(data, dict):
            return
        slug = data.get("active_role")
        if not isinstance(slug, str) or self._store.get(slug) is None:
            if slug:
                logger.debug("Ignoring state file role %r: role no longer exists", slug)
            return

        self._state = RuntimeRoleStateData(
            active_role=slug,
            source="state-file",
            set_at=_parse_timestamp(data.get("modified_at")),
        )
        logger.info("Adopted role %s from %s", slug, path)

    def _save_to_file(self, source: StateSource) -> None:
        path = self.state_file
        if path is None:
            return

        data = {
            "active_role": self._state.active_role,
            "role_source": source,
            "modified_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            logger.debug("Could not write state file %s: %s", path, e)

    def _delete_file(self) -> None:
        path = self.state_file
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not delete state file %s: %s", path, e)


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)
