"""import/export of tree data.

export is a pure serialization that keeps ids. import validates foreign
json, then repairs it: every id is regenerated and every cross reference
(node -> node type, field -> field definition) is remapped through the
same tables so no custom field is orphaned.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .models import DEFAULT_TREE_TITLE, MAX_TREE_DEPTH, Node, TreeState, generate_id


# --- configuration ---

EXPORT_VERSION = "1.0"


class ImportErrorKind(Enum):
    INVALID_FORMAT = "invalidFormat"
    NO_TREE_DATA = "noTreeData"
    NO_NODE_TYPES = "noNodeTypes"
    INVALID_NODE_STRUCTURE = "invalidNodeStructure"
    INVALID_NODE_TYPE_STRUCTURE = "invalidNodeTypeStructure"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[ImportErrorKind] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"valid": self.valid}
        if self.error is not None:
            d["error"] = self.error.value
        return d


@dataclass
class ImportOutcome:
    """result of reading foreign data: a repaired state or the reason it was refused."""

    validation: ValidationResult
    state: Optional[TreeState] = None

    @property
    def ok(self) -> bool:
        return self.validation.valid and self.state is not None


_VALID = ValidationResult(valid=True)


def _present(value: Any) -> bool:
    """a non-empty scalar. foreign payloads may carry numeric ids or names."""
    return isinstance(value, (str, int, float)) and not isinstance(value, bool) and bool(value)


def _tree_is_valid(nodes: list) -> bool:
    """check every node, depth first, without recursing."""
    stack = [(node, 1) for node in reversed(nodes)]
    while stack:
        node, depth = stack.pop()
        if not isinstance(node, dict) or depth > MAX_TREE_DEPTH:
            return False
        if not _present(node.get("id")) or not _present(node.get("name")):
            return False
        children = node.get("children")
        if not isinstance(children, list):
            return False
        stack.extend((child, depth + 1) for child in reversed(children))
    return True


def _node_type_is_valid(node_type: Any) -> bool:
    return (
        isinstance(node_type, dict)
        and _present(node_type.get("id"))
        and _present(node_type.get("name"))
        and isinstance(node_type.get("fieldDefinitions"), list)
    )


def validate(raw: Any) -> ValidationResult:
    """check the shape of an import payload, reporting the first failure."""
    if not isinstance(raw, dict):
        return ValidationResult(False, ImportErrorKind.INVALID_FORMAT)
    if not isinstance(raw.get("tree"), list):
        return ValidationResult(False, ImportErrorKind.NO_TREE_DATA)
    if not isinstance(raw.get("nodeTypes"), list):
        return ValidationResult(False, ImportErrorKind.NO_NODE_TYPES)
    if not _tree_is_valid(raw["tree"]):
        return ValidationResult(False, ImportErrorKind.INVALID_NODE_STRUCTURE)
    if not all(_node_type_is_valid(t) for t in raw["nodeTypes"]):
        return ValidationResult(False, ImportErrorKind.INVALID_NODE_TYPE_STRUCTURE)
    return _VALID


def repair(data: dict) -> dict:
    """regenerate all ids in validated import data, remapping references.

    field definitions resolve only within the node's own type, so a field
    whose definition is missing from that type (or whose node type is missing
    from the payload) loses its definition but keeps its name and value.
    the input dict is left untouched.
    """
    type_ids: dict[Any, str] = {}
    definition_ids: dict[tuple[Any, Any], str] = {}  # (old type id, old definition id)

    node_types = []
    for node_type in data["nodeTypes"]:
        new_type_id = generate_id()
        type_ids[node_type["id"]] = new_type_id
        definitions = []
        for definition in node_type["fieldDefinitions"]:
            new_definition_id = generate_id()
            if "id" in definition:
                definition_ids[(node_type["id"], definition["id"])] = new_definition_id
            definitions.append({**definition, "id": new_definition_id})
        node_types.append({
            **node_type,
            "id": new_type_id,
            "name": str(node_type["name"]),
            "fieldDefinitions": definitions,
        })

    def repair_node(node: dict) -> dict:
        old_type_id = node.get("nodeTypeId", node.get("nodeType"))
        fields = [
            {
                **f,
                "id": generate_id(),
                "definitionId": definition_ids.get((old_type_id, f.get("definitionId") or f.get("fieldId"))),
            }
            for f in node.get("customFields") or []
        ]
        for f in fields:
            f.pop("fieldId", None)
        repaired = {
            **node,
            "id": generate_id(),
            "name": str(node["name"]),
            "nodeTypeId": type_ids.get(old_type_id),
            "customFields": fields,
            "children": [repair_node(child) for child in node["children"]],
        }
        repaired.pop("nodeType", None)
        return repaired

    return {
        **data,
        "tree": [repair_node(node) for node in data["tree"]],
        "nodeTypes": node_types,
    }


def create_export_data(tree: list[Node], node_types: list, tree_title: str) -> dict:
    """build the export payload. ids are kept as they are."""
    state = TreeState(tree=tree, node_types=node_types, tree_title=tree_title)
    return {
        **state.to_dict(),
        "version": EXPORT_VERSION,
        "exportDate": datetime.now(timezone.utc).isoformat(),
    }


def dumps_export(state: TreeState) -> str:
    """export payload as pretty json text."""
    data = create_export_data(state.tree, state.node_types, state.tree_title)
    return json.dumps(data, indent=2, ensure_ascii=False)


def load_import(raw: Any) -> ImportOutcome:
    """validate and repair foreign data given as json text or an already parsed object."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, RecursionError):
            return ImportOutcome(ValidationResult(False, ImportErrorKind.INVALID_FORMAT))

    result = validate(raw)
    if not result.valid:
        return ImportOutcome(result)

    try:
        state = TreeState.from_dict(repair(raw))
    except (KeyError, TypeError, AttributeError):
        # passes the shape check but carries malformed fields or definitions
        return ImportOutcome(ValidationResult(False, ImportErrorKind.INVALID_FORMAT))
    if not isinstance(state.tree_title, str) or not state.tree_title.strip():
        state.tree_title = DEFAULT_TREE_TITLE
    return ImportOutcome(result, state)


def export_filename(title: str) -> str:
    """file name for an exported tree."""
    stem = re.sub(r'[\\/:*?"<>|\s]+', "_", title.strip()).strip("_") or "tree"
    return f"{stem}.json"
