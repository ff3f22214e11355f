"""error taxonomy for tree editing, snapshots and persistence.

validation failures of imported data are not here: they are returned as
values by transfer.validate, never raised.
"""

from __future__ import annotations


class TreeKeeperError(Exception):
    """base for all domain errors."""


class NotFound(TreeKeeperError):
    """an operation referenced an id that does not exist."""

    kind = "item"

    def __init__(self, item_id: str):
        super().__init__(f"{self.kind} not found: {item_id}")
        self.item_id = item_id


class NodeNotFound(NotFound):
    kind = "node"


class NodeTypeNotFound(NotFound):
    kind = "node type"


class SnapshotNotFound(NotFound):
    kind = "snapshot"


class WorkspaceNotFound(NotFound):
    kind = "workspace"


class CycleViolation(TreeKeeperError):
    """a move would place a node inside itself or its own subtree."""

    def __init__(self, node_id: str, target_id: str):
        super().__init__(f"cannot move {node_id} into its own subtree at {target_id}")
        self.node_id = node_id
        self.target_id = target_id


class EmptyName(TreeKeeperError):
    """a name or title was empty after trimming."""


class DepthExceeded(TreeKeeperError):
    """an add or move would nest nodes deeper than the tree allows."""

    def __init__(self, node_id: str, depth: int, limit: int):
        super().__init__(f"{node_id} would reach depth {depth}, limit is {limit}")
        self.node_id = node_id
        self.depth = depth
        self.limit = limit


class StorageUnavailable(TreeKeeperError):
    """the key-value backend could not be read or written."""

    def __init__(self, key: str, cause: Exception | None = None):
        super().__init__(f"storage unavailable for {key}: {cause}")
        self.key = key
        self.cause = cause
