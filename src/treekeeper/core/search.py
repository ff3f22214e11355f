"""search over the node tree.

queries mix free text with `type:<name>` and `<field>:<value>` terms, e.g.
`type:person dept:sales alice`. all matching is case-insensitive substring.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from .models import Node, NodeType


FIELD_TERM = re.compile(r"([^:\s]+):([^\s]+)")


@dataclass
class ParsedQuery:
    text: str = ""
    type: Optional[str] = None
    fields: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.text and self.type is None and not self.fields


@dataclass
class SearchResult:
    node: Node
    path: list[str]  # node names from the top level down to the match
    match_field: str
    match_value: str


def parse_query(query: str) -> ParsedQuery:
    parsed = ParsedQuery()
    if not query.strip():
        return parsed
    for name, value in FIELD_TERM.findall(query):
        if name == "type":
            parsed.type = value
        else:
            parsed.fields[name] = value
    parsed.text = " ".join(FIELD_TERM.sub(" ", query).split())
    return parsed


def _match(node: Node, query: ParsedQuery, types: dict[str, NodeType]) -> Optional[tuple[str, str]]:
    """(field, value) that made node match, or None."""
    hit: tuple[str, str] = ("", "")

    if query.type is not None:
        node_type = types.get(node.node_type_id or "")
        if node_type is None or query.type.lower() not in node_type.name.lower():
            return None
        hit = ("type", node_type.name)

    for name, value in query.fields.items():
        found = next(
            (
                f for f in node.custom_fields
                if name.lower() in f.name.lower() and value.lower() in f.value.lower()
            ),
            None,
        )
        if found is None:
            return None
        hit = (found.name, found.value)

    if query.text:
        needle = query.text.lower()
        if needle in node.name.lower():
            return ("name", node.name)
        for f in node.custom_fields:
            if needle in f.value.lower():
                return (f.name, f.value)
        return None

    return hit


def search_tree(tree: list[Node], query: ParsedQuery | str, node_types: list[NodeType]) -> list[SearchResult]:
    """matching nodes in depth-first display order."""
    if isinstance(query, str):
        query = parse_query(query)
    if query.is_empty():
        return []
    types = {t.id: t for t in node_types}
    results: list[SearchResult] = []

    def visit(node: Node, path: list[str]) -> None:
        here = path + [node.name]
        hit = _match(node, query, types)
        if hit is not None:
            results.append(SearchResult(node=node, path=here, match_field=hit[0], match_value=hit[1]))
        for child in node.children:
            visit(child, here)

    for root in tree:
        visit(root, [])
    return results
