"""built-in starter trees."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .models import FieldDefinition, FieldType, Node, NodeType, TreeState, generate_id


@dataclass
class SampleTree:
    """named factory for a starter tree. every build gets fresh ids."""

    name: str
    description: str
    build: Callable[[], TreeState]


def _typed(name: str, node_type: NodeType, *values: str, children: Optional[list[Node]] = None) -> Node:
    node = Node.create(name, node_type)
    for f, value in zip(node.custom_fields, values):
        f.value = value
    node.children = children or []
    node.expanded = bool(children)
    return node


def _blank() -> TreeState:
    return TreeState(tree=[Node.create("Root")], tree_title="New tree")


def _family() -> TreeState:
    person = NodeType(
        id=generate_id(),
        name="Person",
        icon="👤",
        field_definitions=[
            FieldDefinition.create("Born", FieldType.TEXT, required=True),
            FieldDefinition.create("Notes", FieldType.TEXTAREA),
        ],
    )
    grandchildren = [_typed("Carol", person, "1990"), _typed("Dan", person, "1993")]
    tree = [
        _typed(
            "Alice",
            person,
            "1940",
            "family founder",
            children=[_typed("Bob", person, "1965", children=grandchildren), _typed("Eve", person, "1968")],
        )
    ]
    return TreeState(tree=tree, node_types=[person], tree_title="Family tree")


def _organization() -> TreeState:
    team = NodeType(
        id=generate_id(),
        name="Team",
        icon="📁",
        field_definitions=[FieldDefinition.create("Description", FieldType.TEXTAREA)],
    )
    employee = NodeType(
        id=generate_id(),
        name="Employee",
        icon="👤",
        field_definitions=[
            FieldDefinition.create("Role", FieldType.TEXT, required=True),
            FieldDefinition.create("Profile", FieldType.LINK),
        ],
    )
    sales = _typed(
        "Sales",
        team,
        "revenue and accounts",
        children=[_typed("Ichiro Suzuki", employee, "Sales lead"), _typed("Hanako Sato", employee, "Account manager")],
    )
    engineering = _typed(
        "Engineering",
        team,
        "product development",
        children=[_typed("Taro Tanaka", employee, "Engineer", "https://example.com/taro")],
    )
    root = _typed("Company", team, "organization chart", children=[sales, engineering])
    return TreeState(tree=[root], node_types=[team, employee], tree_title="Organization chart")


BUILTIN_SAMPLES: dict[str, SampleTree] = {
    "blank": SampleTree("Blank", "A single empty root node", _blank),
    "family": SampleTree("Family tree", "Three generations of people with birth years", _family),
    "organization": SampleTree("Organization chart", "Teams and employees with roles", _organization),
}


def get_sample(name: str) -> Optional[SampleTree]:
    return BUILTIN_SAMPLES.get(name)


def default_state() -> TreeState:
    """tree used for a brand new first workspace."""
    return _organization()
