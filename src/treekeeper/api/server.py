"""fastapi server for treekeeper.

exposes tree editing, snapshots, import/export and workspaces as REST
endpoints for a browser frontend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..core.errors import CycleViolation, DepthExceeded, EmptyName, NotFound
from ..core.models import CustomField, FieldDefinition, FieldType, Node, NodeType
from ..core.samples import BUILTIN_SAMPLES, get_sample
from ..core.scheduler import AsyncioScheduler, Scheduler
from ..core.search import search_tree
from ..core.fields import validate_node_form
from ..core.session import EditorSession
from ..core.snapshots import DEFAULT_SNAPSHOT_CAP, DEFAULT_SNAPSHOT_DELAY, TreeSnapshot
from ..core.storage import FileStorage, MemoryStorage, StorageBackend
from ..core.transfer import export_filename
from ..core.tree import DropPosition, FieldChanges, drop_position
from ..core.workspaces import DEFAULT_NAMESPACE, DEFAULT_SAVE_DELAY, PersistenceContext


logger = logging.getLogger(__name__)


# --- pydantic models for api ---

class NodeCreate(BaseModel):
    """request to create a node."""
    parent_id: Optional[str] = None
    after_sibling_id: Optional[str] = None
    name: str = "New node"
    node_type_id: Optional[str] = None


class CustomFieldModel(BaseModel):
    id: str
    name: str
    value: str = ""
    type: str = "text"
    definition_id: Optional[str] = None


class NodeUpdate(BaseModel):
    """request to edit a node's name, type and fields."""
    name: str
    node_type_id: Optional[str] = None
    custom_fields: list[CustomFieldModel] = []
    icon: Optional[str] = None


class MoveRequest(BaseModel):
    """request to move a node next to or inside another.

    position may be given directly, or derived from where the pointer was
    released inside the target row (offset_y within height).
    """
    target_id: str
    position: Optional[Literal["before", "after", "inside"]] = None
    offset_y: Optional[float] = None
    height: Optional[float] = None


class FieldDefinitionModel(BaseModel):
    id: str
    name: str
    type: str = "text"
    required: bool = False


class NodeTypeModel(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None
    field_definitions: list[FieldDefinitionModel] = []


class FieldChangesModel(BaseModel):
    node_type_id: str
    added: list[FieldDefinitionModel] = []
    removed: list[str] = []
    renamed: dict[str, str] = {}
    type_changed: dict[str, str] = {}


class NodeTypesUpdate(BaseModel):
    """request to replace node types, optionally migrating existing nodes."""
    node_types: list[NodeTypeModel]
    changes: Optional[FieldChangesModel] = None


class NodeRename(BaseModel):
    name: str


class TitleUpdate(BaseModel):
    title: str


class SnapshotCreate(BaseModel):
    title: str
    description: Optional[str] = None


class WorkspaceCreate(BaseModel):
    name: str
    sample: Optional[str] = None  # built-in sample to start from


class WorkspaceRename(BaseModel):
    name: str


class TreeResponse(BaseModel):
    """live tree in api response."""
    workspace_id: Optional[str]
    tree_title: str
    tree: list[dict]
    node_types: list[dict]
    pending_save: bool = False


class SnapshotInfo(BaseModel):
    """snapshot summary for listing."""
    id: str
    timestamp: str
    kind: str
    title: Optional[str] = None
    description: Optional[str] = None
    node_count: int

    @classmethod
    def from_snapshot(cls, snapshot: TreeSnapshot) -> "SnapshotInfo":
        return cls(
            id=snapshot.id,
            timestamp=snapshot.timestamp.isoformat(),
            kind=snapshot.kind.value,
            title=snapshot.title,
            description=snapshot.description,
            node_count=sum(1 for root in snapshot.state.tree for _ in root.walk()),
        )


class WorkspaceInfo(BaseModel):
    """workspace summary for listing."""
    id: str
    name: str
    created_at: str
    updated_at: str
    active: bool = False


class SearchHit(BaseModel):
    node_id: str
    name: str
    path: list[str]
    match_field: str
    match_value: str


# --- app state ---

class AppState:
    """shared application state: one editing session over one storage backend."""

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        scheduler: Optional[Scheduler] = None,
        namespace: str = DEFAULT_NAMESPACE,
        save_delay: float = DEFAULT_SAVE_DELAY,
        snapshot_delay: float = DEFAULT_SNAPSHOT_DELAY,
        snapshot_cap: int = DEFAULT_SNAPSHOT_CAP,
    ):
        self.context = PersistenceContext(
            backend=backend if backend is not None else MemoryStorage(),
            scheduler=scheduler or AsyncioScheduler(),
            namespace=namespace,
            save_delay=save_delay,
            snapshot_delay=snapshot_delay,
            snapshot_cap=snapshot_cap,
        )
        self.session = EditorSession(self.context)

    @property
    def is_open(self) -> bool:
        return self.session.workspace_id is not None


state = AppState()


def _session() -> EditorSession:
    if not state.is_open:
        raise HTTPException(status_code=404, detail="no workspace open")
    return state.session


def _tree_response() -> TreeResponse:
    session = _session()
    return TreeResponse(
        workspace_id=session.workspace_id,
        tree_title=session.tree.title,
        tree=[n.to_dict() for n in session.tree.tree],
        node_types=[t.to_dict() for t in session.tree.node_types],
        pending_save=session.workspace_id in session.workspaces.pending_saves(),
    )


def _workspace_infos() -> list[WorkspaceInfo]:
    session = state.session
    active = session.workspace_id
    return [
        WorkspaceInfo(
            id=w.id,
            name=w.name,
            created_at=w.created_at,
            updated_at=w.updated_at,
            active=w.id == active,
        )
        for w in session.list_workspaces()
    ]


def _node_type_from_model(m: NodeTypeModel) -> NodeType:
    return NodeType(
        id=m.id,
        name=m.name,
        icon=m.icon,
        field_definitions=[
            FieldDefinition(id=d.id, name=d.name, type=FieldType.parse(d.type), required=d.required)
            for d in m.field_definitions
        ],
    )


# --- lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup: open the active workspace (creating one on first run)
    workspace = state.session.open()
    logger.info("serving workspace %s (%s)", workspace.id, workspace.name)
    yield
    # shutdown: write pending changes and stop timers
    state.session.close()
    logger.info("session closed")


# --- app ---

app = FastAPI(
    title="treekeeper api",
    description="REST API for editing typed node trees with snapshots and workspaces",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- endpoints ---

@app.get("/health")
async def health():
    """health check."""
    return {"status": "ok"}


@app.get("/status")
async def status():
    """current workspace, pending saves and snapshot counts."""
    session = state.session
    return {
        "is_open": state.is_open,
        "workspace_id": session.workspace_id,
        "tree_title": session.tree.title if state.is_open else None,
        "pending_saves": session.workspaces.pending_saves(),
        "snapshot_count": len(session.list_snapshots()) if state.is_open else 0,
        "save_delay": state.context.save_delay,
        "snapshot_delay": state.context.snapshot_delay,
        "node_count": sum(1 for _ in session.tree.iter_nodes()),
    }


@app.get("/tree", response_model=TreeResponse)
async def get_tree():
    return _tree_response()


@app.put("/title", response_model=TreeResponse)
async def set_title(req: TitleUpdate):
    try:
        _session().tree.set_title(req.title)
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _tree_response()


@app.post("/node")
async def create_node(req: NodeCreate):
    """add a node under a parent, or at the top level."""
    session = _session()
    try:
        node = session.tree.add_node(
            parent_id=req.parent_id,
            after_sibling_id=req.after_sibling_id,
            name=req.name,
            node_type_id=req.node_type_id,
        )
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DepthExceeded as e:
        raise HTTPException(status_code=400, detail=str(e))
    return node.to_dict()


@app.put("/node/{node_id}")
async def update_node(node_id: str, req: NodeUpdate):
    """edit a node. fields are validated against the node type first."""
    session = _session()
    fields = [
        CustomField(id=f.id, name=f.name, value=f.value, type=FieldType.parse(f.type), definition_id=f.definition_id)
        for f in req.custom_fields
    ]
    node_type = session.tree.get_node_type(req.node_type_id)
    errors = validate_node_form(req.name, node_type, fields)
    if errors:
        raise HTTPException(status_code=400, detail=errors)
    updated = Node(id=node_id, name=req.name, node_type_id=req.node_type_id, custom_fields=fields, icon=req.icon)
    try:
        node = session.tree.update_node(updated)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    return node.to_dict()


@app.post("/node/{node_id}/rename")
async def rename_node(node_id: str, req: NodeRename):
    session = _session()
    try:
        session.tree.rename(node_id, req.name)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.tree.get_node(node_id).to_dict()


@app.delete("/node/{node_id}")
async def delete_node(node_id: str):
    """delete a node and its subtree. deleting a missing node is not an error."""
    deleted = _session().tree.delete_node(node_id)
    return {"status": "deleted" if deleted else "absent", "node_id": node_id}


@app.post("/node/{node_id}/toggle")
async def toggle_expand(node_id: str):
    try:
        expanded = _session().tree.toggle_expand(node_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"node_id": node_id, "expanded": expanded}


@app.post("/node/{node_id}/move", response_model=TreeResponse)
async def move_node(node_id: str, req: MoveRequest):
    """move a node before, after or inside a target node."""
    if req.position is not None:
        position = DropPosition(req.position)
    elif req.offset_y is not None and req.height is not None:
        position = drop_position(req.offset_y, req.height)
    else:
        raise HTTPException(status_code=400, detail="position or offset_y/height required")
    try:
        _session().tree.reparent(node_id, req.target_id, position)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CycleViolation, DepthExceeded) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _tree_response()


@app.post("/node/{node_id}/move-to-root", response_model=TreeResponse)
async def move_to_root(node_id: str):
    try:
        _session().tree.move_to_root(node_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _tree_response()


@app.put("/node-types", response_model=TreeResponse)
async def update_node_types(req: NodeTypesUpdate):
    """replace node types, carrying field edits into nodes of the changed type."""
    changes = None
    if req.changes is not None:
        c = req.changes
        changes = FieldChanges(
            node_type_id=c.node_type_id,
            added=[
                FieldDefinition(id=d.id, name=d.name, type=FieldType.parse(d.type), required=d.required)
                for d in c.added
            ],
            removed=c.removed,
            renamed=c.renamed,
            type_changed={k: FieldType.parse(v) for k, v in c.type_changed.items()},
        )
    _session().tree.update_node_types([_node_type_from_model(m) for m in req.node_types], changes)
    return _tree_response()


@app.get("/search", response_model=list[SearchHit])
async def search(q: str):
    """search nodes by name, type (type:x) or field (field:value)."""
    session = _session()
    return [
        SearchHit(
            node_id=r.node.id,
            name=r.node.name,
            path=r.path,
            match_field=r.match_field,
            match_value=r.match_value,
        )
        for r in search_tree(session.tree.tree, q, session.tree.node_types)
    ]


# --- import / export ---

@app.get("/export")
async def export_json():
    """export the live tree as json, ids unchanged."""
    session = _session()
    return {"filename": export_filename(session.tree.title), "data": session.export_data()}


@app.post("/import", response_model=TreeResponse)
async def import_json(payload: dict):
    """replace the live tree with foreign data, regenerating all ids."""
    outcome = _session().import_data(payload)
    if not outcome.ok:
        raise HTTPException(status_code=400, detail=outcome.validation.to_dict())
    return _tree_response()


# --- snapshots ---

@app.get("/snapshots", response_model=list[SnapshotInfo])
async def list_snapshots():
    return [SnapshotInfo.from_snapshot(s) for s in _session().list_snapshots()]


@app.post("/snapshots", response_model=SnapshotInfo)
async def create_snapshot(req: SnapshotCreate):
    try:
        snapshot = _session().create_manual_snapshot(req.title, req.description)
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SnapshotInfo.from_snapshot(snapshot)


@app.get("/snapshots/{snapshot_id}")
async def get_snapshot(snapshot_id: str):
    """full snapshot contents, for previewing before a restore."""
    session = _session()
    try:
        return session.snapshots.get(snapshot_id, session.workspace_id).to_dict()
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/snapshots/{snapshot_id}/restore", response_model=TreeResponse)
async def restore_snapshot(snapshot_id: str):
    try:
        _session().restore_snapshot(snapshot_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _tree_response()


@app.delete("/snapshots")
async def clear_snapshots():
    _session().clear_snapshots()
    return {"status": "cleared"}


# --- workspaces ---

@app.get("/workspaces", response_model=list[WorkspaceInfo])
async def list_workspaces():
    return _workspace_infos()


@app.get("/samples")
async def samples():
    """built-in trees a new workspace can start from."""
    return [{"name": key, "display_name": s.name, "description": s.description} for key, s in BUILTIN_SAMPLES.items()]


@app.post("/workspaces", response_model=TreeResponse)
async def create_workspace(req: WorkspaceCreate):
    """create a workspace and switch to it."""
    initial = None
    if req.sample:
        sample = get_sample(req.sample)
        if not sample:
            raise HTTPException(status_code=404, detail=f"sample not found: {req.sample}")
        initial = sample.build()
    try:
        state.session.create_workspace(req.name, initial)
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _tree_response()


@app.put("/workspaces/{workspace_id}", response_model=list[WorkspaceInfo])
async def rename_workspace(workspace_id: str, req: WorkspaceRename):
    try:
        renamed = state.session.rename_workspace(workspace_id, req.name)
    except EmptyName as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not renamed:
        raise HTTPException(status_code=404, detail=f"workspace not found: {workspace_id}")
    return _workspace_infos()


@app.delete("/workspaces/{workspace_id}", response_model=list[WorkspaceInfo])
async def delete_workspace(workspace_id: str):
    if not state.session.delete_workspace(workspace_id):
        raise HTTPException(status_code=404, detail=f"workspace not found: {workspace_id}")
    return _workspace_infos()


@app.post("/workspaces/{workspace_id}/activate", response_model=TreeResponse)
async def activate_workspace(workspace_id: str):
    try:
        state.session.switch_workspace(workspace_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _tree_response()


# --- entrypoint ---

def main(argv: Optional[list[str]] = None):
    """run the api server."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="treekeeper api server")
    parser.add_argument("--host", default="127.0.0.1", help="host to bind")
    parser.add_argument("--port", "-p", type=int, default=8000, help="port to bind")
    add_storage_arguments(parser)
    args = parser.parse_args(argv)

    configure(args)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


def add_storage_arguments(parser) -> None:
    """flags shared by the server and the cli."""
    parser.add_argument("--data-dir", "-d", help="directory for workspace files (default: ~/.treekeeper)")
    parser.add_argument("--memory", action="store_true", help="keep workspaces in memory only")
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE, help="storage key prefix")
    parser.add_argument(
        "--save-delay",
        type=float,
        default=DEFAULT_SAVE_DELAY,
        help=f"quiet period before saving, in seconds (default: {DEFAULT_SAVE_DELAY})",
    )
    parser.add_argument(
        "--snapshot-delay",
        type=float,
        default=DEFAULT_SNAPSHOT_DELAY,
        help=f"quiet period before an auto snapshot, in seconds (default: {DEFAULT_SNAPSHOT_DELAY})",
    )
    parser.add_argument(
        "--snapshot-cap",
        type=int,
        default=DEFAULT_SNAPSHOT_CAP,
        help=f"auto snapshots kept per workspace (default: {DEFAULT_SNAPSHOT_CAP})",
    )
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")


def build_backend(args) -> StorageBackend:
    if args.memory:
        return MemoryStorage()
    return FileStorage(Path(args.data_dir).expanduser() if args.data_dir else None)


def configure(args, scheduler: Optional[Scheduler] = None) -> AppState:
    """replace the module state from parsed arguments."""
    global state
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    state = AppState(
        backend=build_backend(args),
        scheduler=scheduler,
        namespace=args.namespace,
        save_delay=args.save_delay,
        snapshot_delay=args.snapshot_delay,
        snapshot_cap=args.snapshot_cap,
    )
    return state


if __name__ == "__main__":
    main()
