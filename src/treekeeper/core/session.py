"""one editing session: the live tree wired to snapshots and persistence.

every tree mutation schedules both an auto snapshot and a save for the
active workspace. the two timers are independent; each one captured its
own copy of the state when it was scheduled.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Optional

from .errors import WorkspaceNotFound
from .models import TreeState
from .samples import default_state
from .snapshots import SnapshotManager, TreeSnapshot
from .transfer import ImportOutcome, create_export_data, load_import
from .tree import TreeModel
from .workspaces import (
    DEFAULT_WORKSPACE_NAME,
    PersistenceContext,
    Workspace,
    WorkspacePersistenceEngine,
    WorkspaceSummary,
)


logger = logging.getLogger(__name__)


class EditorSession:
    """tree model, snapshot manager and workspace engine for one user."""

    def __init__(self, context: PersistenceContext, default: Optional[TreeState] = None):
        self.context = context
        self.default_state = default or default_state()
        self.workspaces = WorkspacePersistenceEngine(context)
        self.snapshots = SnapshotManager(
            context.scheduler,
            cap=context.snapshot_cap,
            delay=context.snapshot_delay,
        )
        self.tree = TreeModel()
        self.workspace_id: Optional[str] = None
        self._loading = False
        self.tree.subscribe(self._on_change)

    def _on_change(self, model: TreeModel) -> None:
        if self.workspace_id is None:
            return
        state = model.state()
        self.snapshots.schedule_auto_snapshot(self.workspace_id, state)
        if not self._loading:
            self.workspaces.save(self.workspace_id, state)

    @contextmanager
    def _load(self):
        """tree replacements from storage are snapshotted but not written back."""
        self._loading = True
        try:
            yield
        finally:
            self._loading = False

    def _activate(self, workspace: Workspace) -> None:
        self.workspace_id = workspace.id
        self.snapshots.active_workspace_id = workspace.id
        with self._load():
            self.tree.replace(workspace.state)
        logger.info("opened workspace %s (%s)", workspace.id, workspace.name)

    def _teardown(self) -> None:
        """settle the current workspace before leaving it.

        its pending save is written to its own key, and nothing remains
        scheduled that could fire after the switch.
        """
        if self.workspace_id is None:
            return
        self.workspaces.flush(self.workspace_id)
        self.workspaces.cancel_pending(self.workspace_id)
        self.snapshots.cancel(self.workspace_id)

    def _require_open(self) -> str:
        if self.workspace_id is None:
            raise RuntimeError("session is not open")
        return self.workspace_id

    # --- lifecycle ---

    def open(self) -> Workspace:
        """load the startup workspace, creating a default one on first run."""
        workspace = self.workspaces.initialize(self.default_state, DEFAULT_WORKSPACE_NAME)
        self._activate(workspace)
        return workspace

    def close(self) -> None:
        """write pending changes and stop all timers."""
        self._teardown()
        self.workspaces.flush()
        self.workspaces.cancel_pending()

    # --- workspaces ---

    def list_workspaces(self) -> list[WorkspaceSummary]:
        return self.workspaces.list_workspaces()

    def switch_workspace(self, workspace_id: str) -> Workspace:
        workspace = self.workspaces.load(workspace_id)
        if workspace is None:
            raise WorkspaceNotFound(workspace_id)
        if workspace_id == self.workspace_id:
            return workspace
        self._teardown()
        self.workspaces.set_active(workspace_id)
        self._activate(workspace)
        return workspace

    def create_workspace(self, name: str, state: Optional[TreeState] = None) -> Workspace:
        """create a workspace and switch to it. without a state it starts from the default tree."""
        workspace = self.workspaces.create_workspace(name, state or self.default_state)
        self._teardown()
        self.workspaces.set_active(workspace.id)
        self._activate(workspace)
        return workspace

    def rename_workspace(self, workspace_id: str, name: str) -> bool:
        if workspace_id == self.workspace_id:
            # the pending save would otherwise write the old title back
            self.tree.set_title(name)
        return self.workspaces.rename(workspace_id, name)

    def delete_workspace(self, workspace_id: str) -> bool:
        was_open = workspace_id == self.workspace_id
        if was_open:
            self.workspaces.cancel_pending(workspace_id)
            self.snapshots.cancel(workspace_id)
        if not self.workspaces.delete(workspace_id):
            return False
        self.snapshots.clear(workspace_id)
        if was_open:
            self.workspace_id = None
            next_id = self.workspaces.active_workspace_id
            workspace = self.workspaces.load(next_id) if next_id else None
            if workspace:
                self._activate(workspace)
            else:
                self.open()
        return True

    # --- import / export ---

    def import_data(self, raw: Any) -> ImportOutcome:
        """replace the live tree with repaired foreign data, if it validates."""
        self._require_open()
        outcome = load_import(raw)
        if outcome.ok:
            self.tree.replace(outcome.state)
        else:
            logger.info("import rejected: %s", outcome.validation.error.value)
        return outcome

    def export_data(self) -> dict:
        state = self.tree.state()
        return create_export_data(state.tree, state.node_types, state.tree_title)

    # --- snapshots ---

    def list_snapshots(self) -> list[TreeSnapshot]:
        return self.snapshots.list_for(self._require_open())

    def create_manual_snapshot(self, title: str, description: Optional[str] = None) -> TreeSnapshot:
        return self.snapshots.create_manual_snapshot(self._require_open(), self.tree.state(), title, description)

    def restore_snapshot(self, snapshot_id: str) -> TreeState:
        state = self.snapshots.restore(snapshot_id, self._require_open())
        self.tree.replace(state)
        return state

    def clear_snapshots(self) -> None:
        self.snapshots.clear(self._require_open())
