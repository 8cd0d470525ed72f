"""
Tests for duplicate detection and survivor selection.
"""
from collections import Counter

from costcontrol.domain.services import Deduplicator, choose_survivor, dedupe_key

from helpers import make_node


class TestDedupeKey:
    """Grouping keys."""

    def test_sourced_nodes_keyed_by_source_ref(self):
        a = make_node("A", parent_id="P", source_ref="d1", name="Concrete")
        b = make_node("B", parent_id="P", source_ref="d1", name="Renamed")
        assert dedupe_key(a) == dedupe_key(b)

    def test_manual_nodes_keyed_by_trimmed_name(self):
        a = make_node("A", parent_id="P", name="Scaffold")
        b = make_node("B", parent_id="P", name="  Scaffold ")
        assert dedupe_key(a) == dedupe_key(b)

    def test_sourced_nodes_match_across_parents(self):
        a = make_node("A", parent_id="P1", source_ref="d1")
        b = make_node("B", parent_id="P2", source_ref="d1")
        assert dedupe_key(a) == dedupe_key(b)

    def test_manual_nodes_under_different_parents_differ(self):
        a = make_node("A", parent_id="P1", name="Scaffold")
        b = make_node("B", parent_id="P2", name="Scaffold")
        assert dedupe_key(a) != dedupe_key(b)

    def test_survivor_is_earliest(self):
        late = make_node("A", created_offset=10)
        early = make_node("Z", created_offset=0)
        assert choose_survivor([late, early]) is early


class TestDeduplicator:
    """Tests for Deduplicator.dedupe."""

    def test_no_duplicates(self):
        nodes = [
            make_node("E1", level=0, source_ref="e1"),
            make_node("D1", parent_id="E1", level=1, source_ref="d1"),
        ]
        result = Deduplicator().dedupe(nodes)
        assert result.removed == []
        assert len(result.kept) == 2

    def test_keeps_earliest_of_sourced_duplicates(self):
        nodes = [
            make_node("E1", level=0, source_ref="e1", bo=20000),
            make_node("D1b", parent_id="E1", level=1, source_ref="d1", bo=10000, created_offset=5),
            make_node("D1a", parent_id="E1", level=1, source_ref="d1", bo=10000, created_offset=1),
        ]
        result = Deduplicator().dedupe(nodes)

        assert [n.id for n in result.removed] == ["D1b"]
        assert result.survivor_of == {"D1b": "D1a"}
        assert result.affected_parent_ids == ["E1"]
        # Nothing is mutated by planning
        assert all(not n.is_deleted for n in nodes)

    def test_children_of_removed_move_to_survivor(self):
        nodes = [
            make_node("S1", level=0, source_ref="s1"),
            make_node("E1a", parent_id="S1", level=1, source_ref="e1", created_offset=0),
            make_node("E1b", parent_id="S1", level=1, source_ref="e1", created_offset=9),
            make_node("D1", parent_id="E1b", level=2, source_ref="d1"),
        ]
        result = Deduplicator().dedupe(nodes)

        assert [n.id for n in result.removed] == ["E1b"]
        assert [(child.id, parent) for child, parent in result.reparented] == [("D1", "E1a")]
        assert "D1" in result.recompute_start_ids

    def test_merged_children_are_deduplicated_in_turn(self):
        nodes = [
            make_node("S1", level=0, source_ref="s1"),
            make_node("E1a", parent_id="S1", level=1, source_ref="e1", created_offset=0),
            make_node("E1b", parent_id="S1", level=1, source_ref="e1", created_offset=9),
            make_node("D1a", parent_id="E1a", level=2, source_ref="d1", created_offset=0),
            make_node("D1b", parent_id="E1b", level=2, source_ref="d1", created_offset=3),
        ]
        result = Deduplicator().dedupe(nodes)

        assert {n.id for n in result.removed} == {"E1b", "D1b"}
        # D1b is removed, not moved
        assert result.reparented == []

    def test_sourced_duplicate_under_another_parent_removed(self):
        nodes = [
            make_node("S1", level=0, source_ref="s1"),
            make_node("E1", parent_id="S1", level=1, source_ref="e1"),
            make_node("E2", parent_id="S1", level=1, source_ref="e2"),
            make_node("D1", parent_id="E1", level=2, source_ref="d1", created_offset=0),
            make_node("D1x", parent_id="E2", level=2, source_ref="d1", created_offset=30),
        ]
        result = Deduplicator().dedupe(nodes)

        assert [n.id for n in result.removed] == ["D1x"]
        assert result.survivor_of == {"D1x": "D1"}
        assert result.affected_parent_ids == ["E2"]

    def test_manual_duplicates_by_name(self):
        nodes = [
            make_node("P", level=0),
            make_node("M1", parent_id="P", level=1, name="Skip hire", created_offset=0),
            make_node("M2", parent_id="P", level=1, name="Skip hire ", created_offset=1),
            make_node("M3", parent_id="P", level=1, name="Scaffold", created_offset=2),
        ]
        result = Deduplicator().dedupe(nodes)
        assert [n.id for n in result.removed] == ["M2"]

    def test_deleted_nodes_ignored(self):
        nodes = [
            make_node("E1", level=0, source_ref="e1"),
            make_node("D1a", parent_id="E1", level=1, source_ref="d1", created_offset=0, is_deleted=True),
            make_node("D1b", parent_id="E1", level=1, source_ref="d1", created_offset=1),
        ]
        result = Deduplicator().dedupe(nodes)
        assert result.removed == []

    def test_at_most_one_live_node_per_source_ref(self):
        nodes = [make_node("S1", level=0, source_ref="s1")]
        for i in range(4):
            nodes.append(make_node(f"E{i}", parent_id="S1", level=1, source_ref="e1", created_offset=i))
            nodes.append(make_node(f"D{i}", parent_id=f"E{i}", level=2, source_ref="d1", created_offset=i))

        result = Deduplicator().dedupe(nodes)
        removed = {n.id for n in result.removed}
        live_refs = Counter(n.source_ref for n in nodes if n.id not in removed)

        assert all(count == 1 for count in live_refs.values())
        assert result.removed_count == 6
