"""
Snapshot validation tests.

Run with:
    pytest tests/test_validator.py -v
"""

import pytest

from agentlib.exceptions import UnreachableEndError, ValidationError
from apps.graphs.designer.validator import validate_snapshot

from fakes import make_node, make_snapshot


class TestStructuralChecks:
    """Malformed snapshots are rejected before anything is built."""

    def test_missing_snapshot(self):
        with pytest.raises(ValidationError, match="snapshot is missing"):
            validate_snapshot(None)

    def test_empty_entry_node(self):
        snapshot = make_snapshot("  ", [make_node("a")], [("a", "END")])
        with pytest.raises(ValidationError, match="entry node is empty"):
            validate_snapshot(snapshot)

    def test_entry_node_with_spaces(self):
        snapshot = make_snapshot(" a", [make_node("a")], [("a", "END")])
        with pytest.raises(ValidationError, match="leading or trailing spaces"):
            validate_snapshot(snapshot)

    def test_missing_node_entry(self):
        snapshot = make_snapshot("a", [make_node("a"), None], [("a", "END")])
        with pytest.raises(ValidationError, match="index 1 is missing"):
            validate_snapshot(snapshot)

    def test_duplicate_node_key_reports_index(self):
        snapshot = make_snapshot("a", [make_node("a"), make_node("b"), make_node("a")], [("a", "END")])
        with pytest.raises(ValidationError, match="duplicate graph node key 'a' at index 2"):
            validate_snapshot(snapshot)

    def test_node_key_with_spaces(self):
        snapshot = make_snapshot("a", [make_node("a"), make_node("b ")], [("a", "END")])
        with pytest.raises(ValidationError, match="leading or trailing spaces"):
            validate_snapshot(snapshot)

    def test_entry_node_not_found(self):
        snapshot = make_snapshot("missing", [make_node("a")], [("a", "END")])
        with pytest.raises(ValidationError, match="was not found"):
            validate_snapshot(snapshot)

    def test_self_loop_edge(self):
        snapshot = make_snapshot("a", [make_node("a")], [("a", "a"), ("a", "END")])
        with pytest.raises(ValidationError, match="cannot point to itself"):
            validate_snapshot(snapshot)

    def test_duplicate_edge(self):
        snapshot = make_snapshot("a", [make_node("a")], [("a", "END"), ("a", "END")])
        with pytest.raises(ValidationError, match="duplicate graph edge"):
            validate_snapshot(snapshot)

    def test_edge_unknown_target(self):
        snapshot = make_snapshot("a", [make_node("a")], [("a", "ghost")])
        with pytest.raises(ValidationError, match="unknown target node"):
            validate_snapshot(snapshot)

    def test_edge_unknown_source(self):
        snapshot = make_snapshot("a", [make_node("a")], [("ghost", "END"), ("a", "END")])
        with pytest.raises(ValidationError, match="unknown source node"):
            validate_snapshot(snapshot)


class TestReachability:
    """The entry node must reach END, counting supervisor routing edges."""

    def test_linear_graph_passes(self):
        snapshot = make_snapshot("a", [make_node("a"), make_node("b")], [("a", "b"), ("b", "END")])
        validate_snapshot(snapshot)

    def test_unreachable_end_names_entry_node(self):
        snapshot = make_snapshot("a", [make_node("a"), make_node("b")], [("a", "b")])
        with pytest.raises(UnreachableEndError) as exc_info:
            validate_snapshot(snapshot)
        assert exc_info.value.entry_node == "a"
        assert "'a'" in str(exc_info.value)

    def test_end_reachable_only_from_other_branch(self):
        snapshot = make_snapshot(
            "a",
            [make_node("a"), make_node("b"), make_node("c")],
            [("a", "b"), ("c", "END")],
        )
        with pytest.raises(UnreachableEndError):
            validate_snapshot(snapshot)

    def test_supervisor_synthesizes_end_edge(self):
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", {"members": ["a"]}), make_node("a")],
        )
        validate_snapshot(snapshot)

    def test_member_reaches_end_through_supervisor(self):
        snapshot = make_snapshot(
            "a",
            [make_node("sup", "supervisor", '{"members": ["a"]}'), make_node("a")],
        )
        validate_snapshot(snapshot)

    def test_unreadable_supervisor_config_is_skipped(self):
        # Strict parsing is left to the compiler; here the supervisor adds no edges.
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", "{not json"), make_node("a")],
        )
        with pytest.raises(UnreachableEndError):
            validate_snapshot(snapshot)

    def test_supervisor_without_members_still_reaches_end(self):
        snapshot = make_snapshot("sup", [make_node("sup", "supervisor", {})])
        validate_snapshot(snapshot)
