"""live tree model and its mutations.

the forest is held as nested ordered child lists. every structural check
(existence, ancestry) walks the forest on demand, so there is no parent
bookkeeping to drift out of sync. nesting is capped at MAX_TREE_DEPTH
levels, which keeps every walk well inside the interpreter's recursion limit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, Optional

from .errors import CycleViolation, DepthExceeded, EmptyName, NodeNotFound, NodeTypeNotFound
from .models import (
    DEFAULT_NODE_NAME,
    DEFAULT_TREE_TITLE,
    MAX_TREE_DEPTH,
    CustomField,
    FieldDefinition,
    FieldType,
    Node,
    NodeType,
    TreeState,
)


class DropPosition(Enum):
    BEFORE = "before"
    AFTER = "after"
    INSIDE = "inside"


def drop_position(offset_y: float, height: float) -> DropPosition:
    """map a pointer release inside a rendered row to a drop position.

    top third drops before, bottom third after, the middle inside.
    """
    if height <= 0 or offset_y < height / 3:
        return DropPosition.BEFORE
    if offset_y > height * 2 / 3:
        return DropPosition.AFTER
    return DropPosition.INSIDE


@dataclass
class FieldChanges:
    """schema edits to one node type, to be applied to its existing nodes."""

    node_type_id: str
    added: list[FieldDefinition] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # definition ids
    renamed: dict[str, str] = field(default_factory=dict)  # definition id -> new name
    type_changed: dict[str, FieldType] = field(default_factory=dict)


Listener = Callable[["TreeModel"], None]


class TreeModel:
    """the node forest being edited, plus its node types and title."""

    def __init__(self, state: Optional[TreeState] = None):
        state = state.copy() if state else TreeState()
        self.tree: list[Node] = state.tree
        self.node_types: list[NodeType] = state.node_types
        self.title: str = state.tree_title
        self._listeners: list[Listener] = []

    # --- change signal ---

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # --- lookup ---

    def iter_nodes(self) -> Iterator[Node]:
        """all nodes, depth first in display order."""
        for root in self.tree:
            yield from root.walk()

    def _locate(self, node_id: str) -> Optional[tuple[list[Node], int, Optional[Node]]]:
        """find (containing list, index, parent) for a node id."""

        def search(siblings: list[Node], parent: Optional[Node]):
            for i, node in enumerate(siblings):
                if node.id == node_id:
                    return siblings, i, parent
                found = search(node.children, node)
                if found:
                    return found
            return None

        return search(self.tree, None)

    def find_node(self, node_id: str) -> Optional[Node]:
        located = self._locate(node_id)
        if not located:
            return None
        siblings, index, _ = located
        return siblings[index]

    def get_node(self, node_id: str) -> Node:
        node = self.find_node(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def find_parent(self, node_id: str) -> Optional[Node]:
        """parent of a node, None for top-level nodes."""
        located = self._locate(node_id)
        if not located:
            raise NodeNotFound(node_id)
        return located[2]

    def path_to(self, node_id: str) -> list[Node]:
        """nodes from the top level down to node_id inclusive."""

        def search(nodes: list[Node], path: list[Node]) -> Optional[list[Node]]:
            for node in nodes:
                here = path + [node]
                if node.id == node_id:
                    return here
                found = search(node.children, here)
                if found:
                    return found
            return None

        path = search(self.tree, [])
        if path is None:
            raise NodeNotFound(node_id)
        return path

    def is_descendant(self, ancestor_id: str, node_id: str) -> bool:
        """true if node_id lies strictly inside the subtree of ancestor_id."""
        ancestor = self.find_node(ancestor_id)
        if ancestor is None:
            return False
        return any(n.id == node_id for child in ancestor.children for n in child.walk())

    def depth_of(self, node_id: str) -> int:
        """1 for top-level nodes."""
        return len(self.path_to(node_id))

    def get_node_type(self, node_type_id: Optional[str]) -> Optional[NodeType]:
        if node_type_id is None:
            return None
        for node_type in self.node_types:
            if node_type.id == node_type_id:
                return node_type
        return None

    # --- mutations ---

    def add_node(
        self,
        parent_id: Optional[str] = None,
        after_sibling_id: Optional[str] = None,
        name: str = DEFAULT_NODE_NAME,
        node_type_id: Optional[str] = None,
    ) -> Node:
        """create a node under parent_id, or at the top level when parent_id is None.

        the node goes right after after_sibling_id when that id is one of
        the siblings, otherwise at the end.
        """
        node_type = None
        if node_type_id is not None:
            node_type = self.get_node_type(node_type_id)
            if node_type is None:
                raise NodeTypeNotFound(node_type_id)

        if parent_id is None:
            siblings = self.tree
        else:
            parent = self.get_node(parent_id)
            depth = self.depth_of(parent_id) + 1
            if depth > MAX_TREE_DEPTH:
                raise DepthExceeded(parent_id, depth, MAX_TREE_DEPTH)
            parent.expanded = True
            siblings = parent.children

        node = Node.create(name.strip() or DEFAULT_NODE_NAME, node_type)
        index = len(siblings)
        for i, sibling in enumerate(siblings):
            if sibling.id == after_sibling_id:
                index = i + 1
                break
        siblings.insert(index, node)
        self._notify()
        return node

    def delete_node(self, node_id: str) -> bool:
        """remove a node with its subtree. returns False if it was already gone."""
        located = self._locate(node_id)
        if not located:
            return False
        siblings, index, _ = located
        del siblings[index]
        self._notify()
        return True

    def rename(self, node_id: str, new_name: str) -> None:
        name = new_name.strip()
        if not name:
            raise EmptyName("node name cannot be empty")
        node = self.get_node(node_id)
        if node.name == name:
            return
        node.name = name
        self._notify()

    def toggle_expand(self, node_id: str) -> bool:
        """flip the expanded flag, returning the new value."""
        node = self.get_node(node_id)
        node.expanded = not node.expanded
        self._notify()
        return node.expanded

    def reparent(self, node_id: str, target_id: str, position: DropPosition | str) -> None:
        """move node_id relative to target_id as one step.

        raises NodeNotFound, CycleViolation or DepthExceeded without touching
        the tree.
        """
        position = DropPosition(position)
        source = self._locate(node_id)
        if not source:
            raise NodeNotFound(node_id)
        if self._locate(target_id) is None:
            raise NodeNotFound(target_id)

        src_siblings, src_index, _ = source
        node = src_siblings[src_index]
        if node_id == target_id or any(n.id == target_id for n in node.walk()):
            raise CycleViolation(node_id, target_id)

        depth = self.depth_of(target_id) + (1 if position is DropPosition.INSIDE else 0)
        deepest = depth + _height(node) - 1
        if deepest > MAX_TREE_DEPTH:
            raise DepthExceeded(node_id, deepest, MAX_TREE_DEPTH)

        del src_siblings[src_index]
        # target index may have shifted after the removal
        siblings, index, _ = self._locate(target_id)
        if position is DropPosition.INSIDE:
            target = siblings[index]
            target.children.append(node)
            target.expanded = True
        else:
            siblings.insert(index + 1 if position is DropPosition.AFTER else index, node)
        self._notify()

    def move_to_root(self, node_id: str) -> None:
        """move a node to the end of the top level."""
        located = self._locate(node_id)
        if not located:
            raise NodeNotFound(node_id)
        siblings, index, _ = located
        node = siblings.pop(index)
        self.tree.append(node)
        self._notify()

    def update_node(self, updated: Node) -> Node:
        """replace name, type, fields and icon of an existing node.

        children and the expanded flag stay as they are in the live tree.
        field references that do not resolve in the node's type are cleared.
        """
        name = updated.name.strip()
        if not name:
            raise EmptyName("node name cannot be empty")
        node = self.get_node(updated.id)
        node_type = None
        if updated.node_type_id is not None:
            node_type = self.get_node_type(updated.node_type_id)
            if node_type is None:
                raise NodeTypeNotFound(updated.node_type_id)

        fields = []
        for f in updated.custom_fields:
            if node_type is None or node_type.get_definition(f.definition_id) is None:
                f = CustomField(id=f.id, name=f.name, value=f.value, type=f.type)
            fields.append(f)

        node.name = name
        node.node_type_id = updated.node_type_id
        node.custom_fields = fields
        node.icon = updated.icon
        self._notify()
        return node

    def update_node_types(self, node_types: list[NodeType], changes: Optional[FieldChanges] = None) -> None:
        """replace the node type list, carrying schema edits into existing nodes."""
        self.node_types = list(node_types)
        if changes is not None:
            for node in self.iter_nodes():
                if node.node_type_id == changes.node_type_id:
                    _apply_field_changes(node, changes)
        self._detach_missing_types()
        self._notify()

    def _detach_missing_types(self) -> None:
        """untype nodes and fields whose type or definition no longer exists."""
        for node in self.iter_nodes():
            node_type = self.get_node_type(node.node_type_id)
            if node_type is None:
                node.node_type_id = None
            for f in node.custom_fields:
                if f.definition_id is not None and (
                    node_type is None or node_type.get_definition(f.definition_id) is None
                ):
                    f.definition_id = None

    def set_title(self, title: str) -> None:
        title = title.strip()
        if not title:
            raise EmptyName("tree title cannot be empty")
        if title == self.title:
            return
        self.title = title
        self._notify()

    def replace(self, state: TreeState) -> None:
        """swap in a whole new tree (load, restore, import).

        type and definition references that do not resolve are cleared.
        """
        state = state.copy()
        self.tree = state.tree
        self.node_types = state.node_types
        self.title = state.tree_title or DEFAULT_TREE_TITLE
        self._detach_missing_types()
        self._notify()

    def state(self) -> TreeState:
        """deep copy of the current tree, types and title."""
        return TreeState(tree=self.tree, node_types=self.node_types, tree_title=self.title).copy()


def _height(node: Node) -> int:
    """levels in the subtree rooted at node, counting node itself."""
    return 1 + max((_height(child) for child in node.children), default=0)


def _apply_field_changes(node: Node, changes: FieldChanges) -> None:
    fields = [f for f in node.custom_fields if f.definition_id not in changes.removed]
    for f in fields:
        if f.definition_id in changes.renamed:
            f.name = changes.renamed[f.definition_id]
        if f.definition_id in changes.type_changed:
            f.type = changes.type_changed[f.definition_id]
            f.value = ""
    present = {f.definition_id for f in fields}
    for definition in changes.added:
        if definition.id not in present:
            fields.append(CustomField.from_definition(definition))
    node.custom_fields = fields
