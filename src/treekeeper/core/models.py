"""core data model for treekeeper.

typed nodes nested as ordered child lists. no parent back-pointers:
ancestry is always computed by walking the forest.
"""

from __future__ import annotations

import copy
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# --- configuration ---

DEFAULT_NODE_NAME = "New node"
DEFAULT_TREE_TITLE = "New tree"
MAX_TREE_DEPTH = 100  # levels, top-level nodes are depth 1


class FieldType(Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    LINK = "link"
    YOUTUBE = "youtube"
    IMAGE = "image"
    AUDIO = "audio"

    @classmethod
    def parse(cls, value: Optional[str]) -> FieldType:
        """read a stored type string, falling back to text for unknown kinds."""
        try:
            return cls(value)
        except ValueError:
            return cls.TEXT


@dataclass
class FieldDefinition:
    """schema entry for one custom field of a node type."""

    id: str
    name: str
    type: FieldType = FieldType.TEXT
    required: bool = False

    @classmethod
    def create(cls, name: str, type: FieldType = FieldType.TEXT, required: bool = False) -> FieldDefinition:
        return cls(id=generate_id(), name=name, type=type, required=required)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, d: dict) -> FieldDefinition:
        return cls(
            id=d["id"],
            name=d["name"],
            type=FieldType.parse(d.get("type")),
            required=bool(d.get("required", False)),
        )


@dataclass
class NodeType:
    """named schema describing the custom fields of its nodes."""

    id: str
    name: str
    field_definitions: list[FieldDefinition] = field(default_factory=list)
    icon: Optional[str] = None

    def get_definition(self, definition_id: Optional[str]) -> Optional[FieldDefinition]:
        if definition_id is None:
            return None
        for definition in self.field_definitions:
            if definition.id == definition_id:
                return definition
        return None

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "name": self.name,
            "fieldDefinitions": [fd.to_dict() for fd in self.field_definitions],
        }
        if self.icon is not None:
            d["icon"] = self.icon
        return d

    @classmethod
    def from_dict(cls, d: dict) -> NodeType:
        return cls(
            id=d["id"],
            name=d["name"],
            field_definitions=[FieldDefinition.from_dict(fd) for fd in d.get("fieldDefinitions", [])],
            icon=d.get("icon"),
        )


@dataclass
class CustomField:
    """a value attached to a node, optionally typed by a field definition."""

    id: str
    name: str
    value: str = ""
    type: FieldType = FieldType.TEXT
    definition_id: Optional[str] = None

    @classmethod
    def from_definition(cls, definition: FieldDefinition, value: str = "") -> CustomField:
        """create an empty field bound to a definition."""
        return cls(
            id=generate_id(),
            name=definition.name,
            value=value,
            type=definition.type,
            definition_id=definition.id,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "definitionId": self.definition_id,
            "name": self.name,
            "type": self.type.value,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, d: dict) -> CustomField:
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            value=d.get("value", "") or "",
            type=FieldType.parse(d.get("type")),
            # older payloads carry the definition reference as fieldId
            definition_id=d.get("definitionId") or d.get("fieldId"),
        )


@dataclass
class Node:
    """single entry in the tree."""

    id: str
    name: str
    node_type_id: Optional[str] = None
    children: list[Node] = field(default_factory=list)
    custom_fields: list[CustomField] = field(default_factory=list)
    expanded: bool = False  # display state only
    icon: Optional[str] = None

    @classmethod
    def create(
        cls,
        name: str = DEFAULT_NODE_NAME,
        node_type: Optional[NodeType] = None,
    ) -> Node:
        """create a node with a fresh id and one empty field per definition of its type."""
        fields = []
        if node_type is not None:
            fields = [CustomField.from_definition(fd) for fd in node_type.field_definitions]
        return cls(
            id=generate_id(),
            name=name,
            node_type_id=node_type.id if node_type else None,
            custom_fields=fields,
        )

    def walk(self):
        """yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict:
        """serialize to dict for json."""
        d = {
            "id": self.id,
            "name": self.name,
            "nodeTypeId": self.node_type_id,
            "expanded": self.expanded,
            "children": [c.to_dict() for c in self.children],
            "customFields": [f.to_dict() for f in self.custom_fields],
        }
        if self.icon is not None:
            d["icon"] = self.icon
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Node:
        """deserialize from dict, accepting the legacy nodeType/isExpanded keys."""
        return cls(
            id=d["id"],
            name=d["name"],
            node_type_id=d.get("nodeTypeId", d.get("nodeType")),
            children=[cls.from_dict(c) for c in d.get("children", [])],
            custom_fields=[CustomField.from_dict(f) for f in d.get("customFields") or []],
            expanded=bool(d.get("expanded", d.get("isExpanded", False))),
            icon=d.get("icon"),
        )


@dataclass
class TreeState:
    """tree, node types and title as one unit.

    this is what snapshots capture, what workspaces persist and what
    import/export exchange.
    """

    tree: list[Node] = field(default_factory=list)
    node_types: list[NodeType] = field(default_factory=list)
    tree_title: str = DEFAULT_TREE_TITLE

    def copy(self) -> TreeState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "tree": [n.to_dict() for n in self.tree],
            "nodeTypes": [t.to_dict() for t in self.node_types],
            "treeTitle": self.tree_title,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TreeState:
        return cls(
            tree=[Node.from_dict(n) for n in d.get("tree", [])],
            node_types=[NodeType.from_dict(t) for t in d.get("nodeTypes", [])],
            tree_title=d.get("treeTitle", DEFAULT_TREE_TITLE),
        )

    def serialize(self) -> str:
        """canonical json text, equal for equal states."""
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)


def generate_id() -> str:
    """generate a globally unique id."""
    return str(uuid.uuid4())
