"""workspace persistence: an index of known workspaces plus one payload each.

writes are debounced per workspace and always store a complete payload.
storage failures are logged and treated as absence, so the editor keeps
working on its in-memory copy and the next successful save catches up.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import EmptyName, StorageUnavailable
from .models import TreeState, generate_id
from .scheduler import Scheduler
from .snapshots import DEFAULT_SNAPSHOT_CAP, DEFAULT_SNAPSHOT_DELAY
from .storage import StorageBackend


logger = logging.getLogger(__name__)


# --- configuration ---

DEFAULT_NAMESPACE = "tree-editor"
DEFAULT_SAVE_DELAY = 1.0  # seconds
DEFAULT_WORKSPACE_NAME = "My workspace"


@dataclass
class PersistenceContext:
    """everything a component needs to reach storage, passed in explicitly."""

    backend: StorageBackend
    scheduler: Scheduler
    namespace: str = DEFAULT_NAMESPACE
    save_delay: float = DEFAULT_SAVE_DELAY
    snapshot_delay: float = DEFAULT_SNAPSHOT_DELAY
    snapshot_cap: int = DEFAULT_SNAPSHOT_CAP

    @property
    def index_key(self) -> str:
        return f"{self.namespace}-workspaces"

    def workspace_key(self, workspace_id: str) -> str:
        return f"{self.namespace}-workspace-{workspace_id}"


@dataclass
class WorkspaceSummary:
    """index entry: enough to list workspaces without loading their trees."""

    id: str
    name: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> WorkspaceSummary:
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt", ""),
        )


@dataclass
class Workspace:
    id: str
    name: str
    created_at: str
    updated_at: str
    state: TreeState = field(default_factory=TreeState)

    def summary(self) -> WorkspaceSummary:
        return WorkspaceSummary(self.id, self.name, self.created_at, self.updated_at)

    def to_dict(self) -> dict:
        return {**self.summary().to_dict(), **self.state.to_dict()}

    @classmethod
    def from_dict(cls, d: dict) -> Workspace:
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt", ""),
            state=TreeState.from_dict(d),
        )


@dataclass
class WorkspaceIndex:
    workspaces: list[WorkspaceSummary] = field(default_factory=list)
    active_workspace_id: Optional[str] = None

    def find(self, workspace_id: Optional[str]) -> Optional[WorkspaceSummary]:
        for summary in self.workspaces:
            if summary.id == workspace_id:
                return summary
        return None

    def to_dict(self) -> dict:
        return {
            "workspaces": [w.to_dict() for w in self.workspaces],
            "activeWorkspaceId": self.active_workspace_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> WorkspaceIndex:
        return cls(
            workspaces=[WorkspaceSummary.from_dict(w) for w in d.get("workspaces", [])],
            active_workspace_id=d.get("activeWorkspaceId"),
        )


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkspacePersistenceEngine:
    """tracks known workspaces, the active one, and debounced saves."""

    def __init__(self, context: PersistenceContext, clock: Callable[[], str] = _utcnow):
        self.context = context
        self.clock = clock
        self._pending: set[str] = set()

    # --- index ---

    def _read_index(self) -> WorkspaceIndex:
        key = self.context.index_key
        try:
            raw = self.context.backend.get(key)
        except StorageUnavailable as e:
            logger.warning("could not read workspace index: %s", e)
            return WorkspaceIndex()
        if not raw:
            return WorkspaceIndex()
        try:
            return WorkspaceIndex.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning("workspace index at %s is unreadable, starting empty: %s", key, e)
            return WorkspaceIndex()

    def _write_index(self, index: WorkspaceIndex) -> bool:
        try:
            self.context.backend.set(self.context.index_key, json.dumps(index.to_dict()))
            return True
        except StorageUnavailable as e:
            logger.warning("could not write workspace index: %s", e)
            return False

    def _write_payload(self, workspace: Workspace) -> bool:
        try:
            self.context.backend.set(
                self.context.workspace_key(workspace.id),
                json.dumps(workspace.to_dict(), ensure_ascii=False),
            )
            return True
        except StorageUnavailable as e:
            logger.warning("could not write workspace %s: %s", workspace.id, e)
            return False

    def list_workspaces(self) -> list[WorkspaceSummary]:
        return self._read_index().workspaces

    @property
    def active_workspace_id(self) -> Optional[str]:
        return self._read_index().active_workspace_id

    # --- payloads ---

    def load(self, workspace_id: str) -> Optional[Workspace]:
        """full workspace, or None when missing, unreadable or malformed."""
        key = self.context.workspace_key(workspace_id)
        try:
            raw = self.context.backend.get(key)
        except StorageUnavailable as e:
            logger.warning("could not read workspace %s: %s", workspace_id, e)
            return None
        if raw is None:
            return None
        try:
            return Workspace.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning("workspace %s is unreadable, treating as missing: %s", workspace_id, e)
            return None

    @staticmethod
    def _timer_key(workspace_id: str) -> str:
        return f"save:{workspace_id}"

    def save(self, workspace_id: str, state: TreeState) -> None:
        """write state once the workspace has been quiet for save_delay seconds."""
        frozen = state.copy()
        self._pending.add(workspace_id)
        self.context.scheduler.schedule(
            self._timer_key(workspace_id),
            self.context.save_delay,
            lambda: self._run_save(workspace_id, frozen),
        )

    def _run_save(self, workspace_id: str, state: TreeState) -> None:
        self._pending.discard(workspace_id)
        self.write(workspace_id, state)

    def write(self, workspace_id: str, state: TreeState) -> bool:
        """store a full payload now. the workspace name follows the tree title."""
        index = self._read_index()
        summary = index.find(workspace_id)
        if summary is None:
            logger.info("workspace %s is no longer indexed, dropping save", workspace_id)
            return False

        existing = self.load(workspace_id)
        now = self.clock()
        workspace = Workspace(
            id=workspace_id,
            name=state.tree_title,
            created_at=existing.created_at if existing else summary.created_at,
            updated_at=now,
            state=state,
        )
        if not self._write_payload(workspace):
            return False

        summary.name = workspace.name
        summary.updated_at = now
        self._write_index(index)
        logger.debug("saved workspace %s (%s)", workspace_id, workspace.name)
        return True

    def flush(self, workspace_id: Optional[str] = None) -> int:
        """run pending saves now. returns how many ran."""
        targets = [workspace_id] if workspace_id else list(self._pending)
        return sum(1 for wid in targets if self.context.scheduler.fire(self._timer_key(wid)))

    def cancel_pending(self, workspace_id: Optional[str] = None) -> None:
        """drop pending saves without writing them."""
        targets = [workspace_id] if workspace_id else list(self._pending)
        for wid in targets:
            self.context.scheduler.cancel(self._timer_key(wid))
            self._pending.discard(wid)

    def pending_saves(self) -> list[str]:
        return sorted(wid for wid in self._pending if self.context.scheduler.pending(self._timer_key(wid)))

    # --- lifecycle ---

    def create_workspace(self, name: str, initial: Optional[TreeState] = None) -> Workspace:
        """create and store a workspace immediately.

        its tree title is the workspace name. it becomes active when no
        workspace is active yet. when the payload cannot be written the
        workspace is not indexed and only the returned copy exists.
        """
        name = name.strip()
        if not name:
            raise EmptyName("workspace name cannot be empty")
        now = self.clock()
        state = initial.copy() if initial else TreeState()
        state.tree_title = name
        workspace = Workspace(id=generate_id(), name=name, created_at=now, updated_at=now, state=state)
        if not self._write_payload(workspace):
            logger.error("workspace %s (%s) was not stored, leaving it out of the index", workspace.id, name)
            return workspace

        index = self._read_index()
        index.workspaces.append(workspace.summary())
        if index.active_workspace_id is None:
            index.active_workspace_id = workspace.id
        self._write_index(index)
        logger.info("created workspace %s (%s)", workspace.id, name)
        return workspace

    def initialize(
        self,
        default_state: Optional[TreeState] = None,
        default_name: str = DEFAULT_WORKSPACE_NAME,
    ) -> Workspace:
        """decide which workspace opens at startup.

        no workspaces: create a default one. otherwise the recorded active
        workspace if it loads, else the first known workspace that loads.
        """
        index = self._read_index()
        if not index.workspaces:
            return self._create_default(default_state, default_name)

        if index.find(index.active_workspace_id):
            workspace = self.load(index.active_workspace_id)
            if workspace:
                return workspace
            logger.warning("active workspace %s did not load", index.active_workspace_id)

        for summary in index.workspaces:
            workspace = self.load(summary.id)
            if workspace:
                self.set_active(workspace.id)
                return workspace

        logger.warning("no known workspace could be loaded, creating a new one")
        return self._create_default(default_state, default_name)

    def _create_default(self, default_state: Optional[TreeState], default_name: str) -> Workspace:
        workspace = self.create_workspace(default_name, default_state)
        self.set_active(workspace.id)
        return workspace

    def rename(self, workspace_id: str, name: str) -> bool:
        """rename a workspace. the stored tree title follows the name."""
        name = name.strip()
        if not name:
            raise EmptyName("workspace name cannot be empty")
        index = self._read_index()
        summary = index.find(workspace_id)
        if summary is None:
            return False
        now = self.clock()
        workspace = self.load(workspace_id)
        if workspace is not None:
            workspace.name = name
            workspace.state.tree_title = name
            workspace.updated_at = now
            self._write_payload(workspace)
        summary.name = name
        summary.updated_at = now
        return self._write_index(index)

    def delete(self, workspace_id: str) -> bool:
        """remove a workspace. an active workspace hands over to the first remaining one."""
        index = self._read_index()
        if index.find(workspace_id) is None:
            return False
        self.cancel_pending(workspace_id)
        try:
            self.context.backend.remove(self.context.workspace_key(workspace_id))
        except StorageUnavailable as e:
            logger.warning("could not remove workspace %s: %s", workspace_id, e)
        index.workspaces = [w for w in index.workspaces if w.id != workspace_id]
        if index.active_workspace_id == workspace_id:
            index.active_workspace_id = index.workspaces[0].id if index.workspaces else None
        return self._write_index(index)

    def set_active(self, workspace_id: str) -> bool:
        index = self._read_index()
        if index.find(workspace_id) is None:
            return False
        index.active_workspace_id = workspace_id
        return self._write_index(index)
