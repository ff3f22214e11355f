"""core primitives shared between the api and the cli."""

from .errors import (
    TreeKeeperError,
    NotFound,
    NodeNotFound,
    NodeTypeNotFound,
    SnapshotNotFound,
    WorkspaceNotFound,
    CycleViolation,
    EmptyName,
    DepthExceeded,
    StorageUnavailable,
)
from .models import (
    FieldType,
    FieldDefinition,
    NodeType,
    CustomField,
    Node,
    TreeState,
    MAX_TREE_DEPTH,
    generate_id,
)
from .tree import TreeModel, DropPosition, FieldChanges, drop_position
from .transfer import (
    ImportErrorKind,
    ImportOutcome,
    ValidationResult,
    validate,
    repair,
    create_export_data,
    load_import,
)
from .scheduler import Scheduler, AsyncioScheduler, ManualScheduler
from .snapshots import SnapshotManager, SnapshotKind, TreeSnapshot
from .storage import StorageBackend, MemoryStorage, FileStorage, get_data_dir
from .workspaces import (
    PersistenceContext,
    Workspace,
    WorkspaceSummary,
    WorkspacePersistenceEngine,
)
from .session import EditorSession

__all__ = [
    # errors
    "TreeKeeperError",
    "NotFound",
    "NodeNotFound",
    "NodeTypeNotFound",
    "SnapshotNotFound",
    "WorkspaceNotFound",
    "CycleViolation",
    "EmptyName",
    "DepthExceeded",
    "StorageUnavailable",
    # models
    "FieldType",
    "FieldDefinition",
    "NodeType",
    "CustomField",
    "Node",
    "TreeState",
    "MAX_TREE_DEPTH",
    "generate_id",
    # tree
    "TreeModel",
    "DropPosition",
    "FieldChanges",
    "drop_position",
    # import/export
    "ImportErrorKind",
    "ImportOutcome",
    "ValidationResult",
    "validate",
    "repair",
    "create_export_data",
    "load_import",
    # scheduling, snapshots, storage
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "SnapshotManager",
    "SnapshotKind",
    "TreeSnapshot",
    "StorageBackend",
    "MemoryStorage",
    "FileStorage",
    "get_data_dir",
    # workspaces
    "PersistenceContext",
    "Workspace",
    "WorkspaceSummary",
    "WorkspacePersistenceEngine",
    "EditorSession",
]
