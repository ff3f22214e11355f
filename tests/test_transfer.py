"""tests for import validation, repair and export."""

import copy
import json

import pytest

from treekeeper.core.models import MAX_TREE_DEPTH, TreeState
from treekeeper.core.transfer import (
    EXPORT_VERSION,
    ImportErrorKind,
    create_export_data,
    dumps_export,
    export_filename,
    load_import,
    repair,
    validate,
)


def shape(nodes):
    """names, field values and nesting, with ids left out."""
    return [
        (n["name"], [f["value"] for f in n.get("customFields", [])], shape(n["children"]))
        for n in nodes
    ]


def nested(depth):
    """a single chain of nodes depth levels deep, built without recursion."""
    node = {"id": f"n{depth}", "name": "leaf", "children": []}
    for level in range(depth - 1, 0, -1):
        node = {"id": f"n{level}", "name": "N", "children": [node]}
    return {"tree": [node], "nodeTypes": []}


def all_ids(data):
    found = []

    def visit(node):
        found.append(node["id"])
        found.extend(f["id"] for f in node.get("customFields", []))
        for child in node["children"]:
            visit(child)

    for node in data["tree"]:
        visit(node)
    for node_type in data["nodeTypes"]:
        found.append(node_type["id"])
        found.extend(d["id"] for d in node_type["fieldDefinitions"])
    return found


@pytest.fixture
def export(sample_state):
    return create_export_data(sample_state.tree, sample_state.node_types, sample_state.tree_title)


class TestValidate:
    """tests for validate."""

    def test_valid_export(self, export):
        result = validate(export)
        assert result.valid
        assert result.error is None
        assert result.to_dict() == {"valid": True}

    @pytest.mark.parametrize("raw", [None, [], "text", 3])
    def test_not_an_object(self, raw):
        assert validate(raw).error is ImportErrorKind.INVALID_FORMAT

    def test_missing_tree(self):
        assert validate({"nodeTypes": []}).error is ImportErrorKind.NO_TREE_DATA
        assert validate({"tree": {}, "nodeTypes": []}).error is ImportErrorKind.NO_TREE_DATA

    def test_missing_node_types(self):
        assert validate({"tree": []}).error is ImportErrorKind.NO_NODE_TYPES

    def test_node_type_without_definitions(self):
        """a node type missing fieldDefinitions is rejected."""
        result = validate({"tree": [], "nodeTypes": [{"id": "t1", "name": "Person"}]})
        assert result.error is ImportErrorKind.INVALID_NODE_TYPE_STRUCTURE
        assert result.to_dict() == {"valid": False, "error": "invalidNodeTypeStructure"}

    def test_bad_nested_node(self):
        """node checks recurse into children."""
        raw = {
            "tree": [{"id": "a", "name": "A", "children": [{"id": "b", "name": "", "children": []}]}],
            "nodeTypes": [],
        }
        assert validate(raw).error is ImportErrorKind.INVALID_NODE_STRUCTURE

    def test_node_without_children(self):
        raw = {"tree": [{"id": "a", "name": "A"}], "nodeTypes": []}
        assert validate(raw).error is ImportErrorKind.INVALID_NODE_STRUCTURE

    def test_node_checked_before_node_types(self):
        raw = {"tree": [{"id": "", "name": "A", "children": []}], "nodeTypes": [{"id": "t"}]}
        assert validate(raw).error is ImportErrorKind.INVALID_NODE_STRUCTURE

    def test_numeric_ids_and_names_accepted(self):
        raw = {
            "tree": [{"id": 1, "name": 2024, "children": [{"id": 2.5, "name": "B", "children": []}]}],
            "nodeTypes": [{"id": 7, "name": "T", "fieldDefinitions": []}],
        }
        assert validate(raw).valid

    @pytest.mark.parametrize("bad", [True, [], {}, None, 0])
    def test_non_scalar_or_empty_id(self, bad):
        raw = {"tree": [{"id": bad, "name": "A", "children": []}], "nodeTypes": []}
        assert validate(raw).error is ImportErrorKind.INVALID_NODE_STRUCTURE

    def test_depth_limit(self):
        assert validate(nested(MAX_TREE_DEPTH)).valid
        assert validate(nested(MAX_TREE_DEPTH + 1)).error is ImportErrorKind.INVALID_NODE_STRUCTURE

    def test_very_deep_tree_rejected(self):
        """nesting far past the interpreter recursion limit is reported, not raised."""
        assert validate(nested(5000)).error is ImportErrorKind.INVALID_NODE_STRUCTURE


class TestRepair:
    """tests for repair."""

    def test_isomorphic_with_fresh_ids(self, export):
        """repair keeps names, values and shape while every id changes."""
        repaired = repair(export)
        assert shape(repaired["tree"]) == shape(export["tree"])
        old, new = all_ids(export), all_ids(repaired)
        assert len(new) == len(set(new))
        assert not set(old) & set(new)

    def test_references_are_remapped_together(self, export):
        repaired = repair(export)
        node_type = repaired["nodeTypes"][0]
        a = repaired["tree"][0]
        assert a["nodeTypeId"] == node_type["id"]
        definition_ids = [d["id"] for d in node_type["fieldDefinitions"]]
        assert [f["definitionId"] for f in a["customFields"]] == definition_ids

    def test_dangling_references_become_none(self):
        data = {
            "tree": [{
                "id": "n",
                "name": "N",
                "nodeTypeId": "gone",
                "children": [],
                "customFields": [{"id": "f", "name": "Role", "value": "kept", "definitionId": "gone-too"}],
            }],
            "nodeTypes": [],
        }
        node = repair(data)["tree"][0]
        assert node["nodeTypeId"] is None
        assert node["customFields"][0]["definitionId"] is None
        assert node["customFields"][0]["value"] == "kept"

    def test_definitions_resolve_within_own_type(self):
        """a field pointing at another type's definition, or under a missing type, is detached."""
        data = {
            "tree": [
                {
                    "id": "p",
                    "name": "P",
                    "nodeTypeId": "person",
                    "children": [],
                    "customFields": [
                        {"id": "f1", "name": "Role", "value": "lead", "definitionId": "role"},
                        {"id": "f2", "name": "Goal", "value": "ship", "definitionId": "goal"},
                    ],
                },
                {
                    "id": "q",
                    "name": "Q",
                    "nodeTypeId": "gone",
                    "children": [],
                    "customFields": [{"id": "f3", "name": "Role", "value": "x", "definitionId": "role"}],
                },
            ],
            "nodeTypes": [
                {"id": "person", "name": "Person", "fieldDefinitions": [{"id": "role", "name": "Role"}]},
                {"id": "team", "name": "Team", "fieldDefinitions": [{"id": "goal", "name": "Goal"}]},
            ],
        }
        repaired = repair(data)
        p, q = repaired["tree"]
        role_id = repaired["nodeTypes"][0]["fieldDefinitions"][0]["id"]
        assert [f["definitionId"] for f in p["customFields"]] == [role_id, None]
        assert [f["value"] for f in p["customFields"]] == ["lead", "ship"]
        assert q["nodeTypeId"] is None
        assert q["customFields"][0]["definitionId"] is None

        state = TreeState.from_dict(repaired)
        for node in state.tree:
            node_type = next((t for t in state.node_types if t.id == node.node_type_id), None)
            for f in node.custom_fields:
                if f.definition_id is not None:
                    assert node_type.get_definition(f.definition_id) is not None

    def test_scalar_ids_and_names(self):
        data = {
            "tree": [{"id": 1, "name": 2024, "nodeTypeId": 7, "children": []}],
            "nodeTypes": [{"id": 7, "name": 3, "fieldDefinitions": []}],
        }
        repaired = repair(data)
        node, node_type = repaired["tree"][0], repaired["nodeTypes"][0]
        assert node["name"] == "2024"
        assert node_type["name"] == "3"
        assert node["nodeTypeId"] == node_type["id"]
        assert isinstance(node["id"], str)

    def test_input_untouched(self, export):
        before = copy.deepcopy(export)
        repair(export)
        assert export == before

    def test_legacy_keys_are_remapped(self):
        data = {
            "tree": [{
                "id": "n",
                "name": "N",
                "nodeType": "t",
                "children": [],
                "customFields": [{"id": "f", "name": "Role", "value": "x", "fieldId": "d"}],
            }],
            "nodeTypes": [{"id": "t", "name": "T", "fieldDefinitions": [{"id": "d", "name": "Role"}]}],
        }
        repaired = repair(data)
        node, node_type = repaired["tree"][0], repaired["nodeTypes"][0]
        assert "nodeType" not in node
        assert node["nodeTypeId"] == node_type["id"]
        assert "fieldId" not in node["customFields"][0]
        assert node["customFields"][0]["definitionId"] == node_type["fieldDefinitions"][0]["id"]


class TestExport:
    """tests for export payloads."""

    def test_export_keeps_ids(self, export, sample_state):
        assert export["tree"] == sample_state.to_dict()["tree"]
        assert export["treeTitle"] == "Sample"
        assert export["version"] == EXPORT_VERSION
        assert "exportDate" in export

    def test_export_node_shape(self, export):
        node = export["tree"][0]
        assert {"id", "name", "nodeTypeId", "expanded", "children", "customFields"} <= set(node)

    def test_dumps_is_json(self, sample_state):
        assert json.loads(dumps_export(sample_state))["treeTitle"] == "Sample"

    def test_filename(self):
        assert export_filename("Org chart: 2024") == "Org_chart_2024.json"
        assert export_filename("   ") == "tree.json"


class TestLoadImport:
    """tests for load_import."""

    def test_roundtrip(self, sample_state):
        outcome = load_import(dumps_export(sample_state))
        assert outcome.ok
        assert shape(outcome.state.to_dict()["tree"]) == shape(sample_state.to_dict()["tree"])
        assert outcome.state.tree_title == "Sample"
        assert outcome.state.tree[0].id != "a"

    def test_bad_json(self):
        outcome = load_import("{not json")
        assert not outcome.ok
        assert outcome.validation.error is ImportErrorKind.INVALID_FORMAT

    def test_validation_error_passed_through(self):
        outcome = load_import({"tree": []})
        assert outcome.state is None
        assert outcome.validation.error is ImportErrorKind.NO_NODE_TYPES

    def test_malformed_definitions(self):
        """passing the shape check but with unusable definitions is invalidFormat."""
        raw = {"tree": [], "nodeTypes": [{"id": "t", "name": "T", "fieldDefinitions": ["oops"]}]}
        assert load_import(raw).validation.error is ImportErrorKind.INVALID_FORMAT

    def test_missing_title_defaults(self):
        outcome = load_import({"tree": [], "nodeTypes": []})
        assert outcome.ok
        assert outcome.state.tree_title == "New tree"

    def test_accepts_bytes(self, sample_state):
        assert load_import(dumps_export(sample_state).encode("utf-8")).ok

    def test_imported_state_is_a_tree_state(self, sample_state):
        assert isinstance(load_import(dumps_export(sample_state)).state, TreeState)

    def test_numeric_names_become_text(self):
        outcome = load_import('{"tree": [{"id": 1, "name": 42, "children": []}], "nodeTypes": []}')
        assert outcome.ok
        assert outcome.state.tree[0].name == "42"

    def test_deeply_nested_json_text(self):
        """json nested beyond what the parser can recurse into is invalidFormat."""
        text = '{"tree": ' + "[" * 100000 + "]" * 100000 + ', "nodeTypes": []}'
        outcome = load_import(text)
        assert not outcome.ok
        assert outcome.validation.error is ImportErrorKind.INVALID_FORMAT

    def test_too_deep_tree(self):
        outcome = load_import(json.dumps(nested(MAX_TREE_DEPTH + 1)))
        assert outcome.validation.error is ImportErrorKind.INVALID_NODE_STRUCTURE
