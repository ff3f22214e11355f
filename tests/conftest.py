"""pytest fixtures for treekeeper tests."""

import pytest
import tempfile
from pathlib import Path

from treekeeper.core.models import FieldDefinition, FieldType, Node, NodeType, TreeState
from treekeeper.core.scheduler import ManualScheduler
from treekeeper.core.session import EditorSession
from treekeeper.core.storage import MemoryStorage
from treekeeper.core.tree import TreeModel
from treekeeper.core.workspaces import PersistenceContext, WorkspacePersistenceEngine


@pytest.fixture
def temp_dir():
    """temporary directory that cleans up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def person_type():
    """node type with one required text field and one optional link."""
    return NodeType(
        id="t-person",
        name="Person",
        field_definitions=[
            FieldDefinition(id="d-role", name="Role", type=FieldType.TEXT, required=True),
            FieldDefinition(id="d-site", name="Website", type=FieldType.LINK),
        ],
    )


@pytest.fixture
def sample_state(person_type):
    """two top-level nodes; the first has a child with a grandchild.

    A
    └── B
        └── C
    D
    """
    c = Node(id="c", name="C")
    b = Node(id="b", name="B", children=[c])
    a = Node.create("A", person_type)
    a.id = "a"
    a.custom_fields[0].value = "founder"
    a.children = [b]
    d = Node(id="d", name="D")
    return TreeState(tree=[a, d], node_types=[person_type], tree_title="Sample")


@pytest.fixture
def model(sample_state):
    return TreeModel(sample_state)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def context(storage, scheduler):
    """persistence context with 1s saves and 2s snapshots on a virtual clock."""
    return PersistenceContext(backend=storage, scheduler=scheduler, save_delay=1.0, snapshot_delay=2.0)


@pytest.fixture
def engine(context):
    return WorkspacePersistenceEngine(context)


@pytest.fixture
def session(context, sample_state):
    """opened session whose first workspace starts from sample_state."""
    s = EditorSession(context, default=sample_state)
    s.open()
    return s
