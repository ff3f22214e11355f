"""point-in-time copies of a workspace's tree.

auto snapshots are debounced, deduplicated against the last accepted one,
and capped per workspace. manual snapshots are taken on request and kept
until cleared.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .errors import EmptyName, SnapshotNotFound
from .models import TreeState, generate_id
from .scheduler import Scheduler


# --- configuration ---

DEFAULT_SNAPSHOT_CAP = 10
DEFAULT_SNAPSHOT_DELAY = 2.0  # seconds


class SnapshotKind(Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True)
class TreeSnapshot:
    """immutable copy of tree, node types and title at one moment."""

    id: str
    timestamp: datetime
    state: TreeState
    kind: SnapshotKind
    title: Optional[str] = None
    description: Optional[str] = None
    seq: int = 0  # tie-breaker for snapshots sharing a timestamp

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            **self.state.to_dict(),
        }
        if self.title is not None:
            d["title"] = self.title
        if self.description is not None:
            d["description"] = self.description
        return d


class SnapshotManager:
    """snapshot lists keyed by workspace id."""

    def __init__(
        self,
        scheduler: Scheduler,
        cap: int = DEFAULT_SNAPSHOT_CAP,
        delay: float = DEFAULT_SNAPSHOT_DELAY,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.scheduler = scheduler
        self.cap = cap
        self.delay = delay
        self.clock = clock
        self.active_workspace_id: Optional[str] = None
        self._snapshots: dict[str, list[TreeSnapshot]] = {}
        self._last_auto: dict[str, str] = {}  # workspace id -> serialized state
        self._seq = itertools.count(1)

    @staticmethod
    def _timer_key(workspace_id: str) -> str:
        return f"snapshot:{workspace_id}"

    def schedule_auto_snapshot(self, workspace_id: str, state: TreeState) -> None:
        """capture state once the workspace has been quiet for `delay` seconds.

        each call restarts the wait; the state of the last call is what gets captured.
        """
        frozen = state.copy()
        self.scheduler.schedule(
            self._timer_key(workspace_id),
            self.delay,
            lambda: self.capture_auto_snapshot(workspace_id, frozen),
        )

    def capture_auto_snapshot(self, workspace_id: str, state: TreeState) -> Optional[TreeSnapshot]:
        """insert an auto snapshot now, unless the tree is empty or unchanged."""
        if not state.tree:
            return None
        serialized = state.serialize()
        if self._last_auto.get(workspace_id) == serialized:
            return None

        snapshot = self._make(state, SnapshotKind.AUTO)
        existing = self._snapshots.get(workspace_id, [])
        autos = [s for s in existing if s.kind is SnapshotKind.AUTO]
        manuals = [s for s in existing if s.kind is SnapshotKind.MANUAL]
        kept = _newest_first([snapshot, *autos])[: self.cap]
        self._snapshots[workspace_id] = _newest_first(manuals + kept)
        self._last_auto[workspace_id] = serialized
        return snapshot

    def create_manual_snapshot(
        self,
        workspace_id: str,
        state: TreeState,
        title: str,
        description: Optional[str] = None,
    ) -> TreeSnapshot:
        """take a titled snapshot immediately. it is never evicted by the cap."""
        title = title.strip()
        if not title:
            raise EmptyName("snapshot title cannot be empty")
        snapshot = self._make(state, SnapshotKind.MANUAL, title, description or None)
        existing = self._snapshots.get(workspace_id, [])
        self._snapshots[workspace_id] = _newest_first([snapshot, *existing])
        return snapshot

    def _make(
        self,
        state: TreeState,
        kind: SnapshotKind,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TreeSnapshot:
        return TreeSnapshot(
            id=generate_id(),
            timestamp=self.clock(),
            state=state.copy(),
            kind=kind,
            title=title,
            description=description,
            seq=next(self._seq),
        )

    def get(self, snapshot_id: str, workspace_id: Optional[str] = None) -> TreeSnapshot:
        """look a snapshot up, only among workspace_id's when one is given."""
        if workspace_id is None:
            groups = list(self._snapshots.values())
        else:
            groups = [self._snapshots.get(workspace_id, [])]
        for snapshots in groups:
            for snapshot in snapshots:
                if snapshot.id == snapshot_id:
                    return snapshot
        raise SnapshotNotFound(snapshot_id)

    def restore(self, snapshot_id: str, workspace_id: Optional[str] = None) -> TreeState:
        """deep copy of a snapshot's state. the snapshot list is not touched."""
        return self.get(snapshot_id, workspace_id).state.copy()

    def list_for(self, workspace_id: Optional[str] = None) -> list[TreeSnapshot]:
        """snapshots of a workspace, newest first."""
        workspace_id = workspace_id or self.active_workspace_id
        if workspace_id is None:
            return []
        return list(self._snapshots.get(workspace_id, []))

    def clear(self, workspace_id: Optional[str] = None) -> None:
        """drop every snapshot of a workspace (the active one by default)."""
        workspace_id = workspace_id or self.active_workspace_id
        if workspace_id is None:
            return
        self.cancel(workspace_id)
        self._snapshots.pop(workspace_id, None)
        self._last_auto.pop(workspace_id, None)

    def cancel(self, workspace_id: Optional[str] = None) -> bool:
        """drop a pending auto snapshot without taking it."""
        workspace_id = workspace_id or self.active_workspace_id
        if workspace_id is None:
            return False
        return self.scheduler.cancel(self._timer_key(workspace_id))

    def pending(self, workspace_id: str) -> bool:
        return self.scheduler.pending(self._timer_key(workspace_id))


def _newest_first(snapshots: list[TreeSnapshot]) -> list[TreeSnapshot]:
    return sorted(snapshots, key=lambda s: (s.timestamp, s.seq), reverse=True)
