"""Tests for event graph construction."""
from datetime import timedelta

import pytest

from sgm.errors import ConfigurationError, UpstreamDataError
from sgm.events.types import OrgEvent
from sgm.graph.builder import EventGraphBuilder, build_event_graph
from sgm.graph.types import EventGraph

pytestmark = pytest.mark.unit


def _degrees(graph):
    degree = {}
    for e in graph.edges:
        degree[e.from_id] = degree.get(e.from_id, 0) + 1
        degree[e.to_id] = degree.get(e.to_id, 0) + 1
    return degree


class TestEmptyAndBasics:
    """Empty input and whole-graph stats."""

    def test_empty_input_gives_zero_stats(self):
        graph = build_event_graph([])
        assert graph.nodes == ()
        assert graph.edges == ()
        assert graph.stats.to_dict() == {
            "nodeCount": 0,
            "edgeCount": 0,
            "uniqueActors": 0,
            "uniqueEntities": 0,
            "uniqueEventTypes": 0,
            "crossSystemEdges": 0,
        }

    def test_cross_system_scenario_stats(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        assert graph.stats.node_count == 12
        assert graph.stats.edge_count == 12
        assert graph.stats.unique_actors == 4
        assert graph.stats.unique_entities == 12
        assert graph.stats.unique_event_types == 3
        assert graph.stats.cross_system_edges == 12
        assert {e.relation for e in graph.edges} == {"same_actor"}

    def test_nodes_sorted_and_indices_time_ordered(self, cross_system_events):
        graph = build_event_graph(list(reversed(cross_system_events)))
        times = [n.timestamp_ms for n in graph.nodes]
        assert times == sorted(times)
        pr_ids = graph.event_type_index["pr.opened"]
        assert len(pr_ids) == 4
        pr_times = [graph.node(i).timestamp_ms for i in pr_ids]
        assert pr_times == sorted(pr_times)
        assert set(graph.actor_index) == {"user_0", "user_1", "user_2", "user_3"}

    def test_input_order_does_not_matter(self, cross_system_events):
        forward = build_event_graph(cross_system_events)
        backward = build_event_graph(list(reversed(cross_system_events)))
        assert forward.to_dict() == backward.to_dict()

    def test_dict_round_trip(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        again = EventGraph.from_dict(graph.to_dict())
        assert again.to_dict() == graph.to_dict()
        assert again.node(graph.nodes[0].event_id) == graph.nodes[0]

    def test_unknown_edge_relation_rejected(self, cross_system_events):
        d = build_event_graph(cross_system_events).to_dict()
        d["edges"][0]["relation"] = "follows"
        with pytest.raises(UpstreamDataError, match="follows"):
            EventGraph.from_dict(d)


class TestEdgeInvariants:
    """Edges always point forward in time and respect the degree cap."""

    def test_every_edge_points_forward(self, cross_system_events, optional_step_events):
        graph = build_event_graph(cross_system_events + optional_step_events)
        assert graph.edges
        for e in graph.edges:
            assert e.from_id != e.to_id
            assert e.time_delta_ms > 0
            assert graph.node(e.from_id).timestamp_ms < graph.node(e.to_id).timestamp_ms
            assert 0.0 <= e.weight <= 1.0

    def test_default_degree_cap(self, make_event, base_time):
        events = [
            make_event("github", "commit.created", "alice", f"c_{i}", base_time + timedelta(minutes=i))
            for i in range(30)
        ]
        graph = build_event_graph(events)
        assert max(_degrees(graph).values()) <= 20
        # 30 events inside one 4h window would give 435 same-actor pairs without the cap
        assert graph.stats.edge_count < 435

    def test_custom_degree_cap(self, make_event, base_time):
        events = [
            make_event("github", "commit.created", "alice", f"c_{i}", base_time + timedelta(minutes=i))
            for i in range(10)
        ]
        graph = build_event_graph(events, max_edges_per_node=3)
        assert max(_degrees(graph).values()) <= 3

    def test_equal_timestamps_are_not_linked(self, make_event, base_time):
        events = [
            make_event("github", "commit.created", "alice", "c_1", base_time),
            make_event("github", "commit.created", "alice", "c_2", base_time),
        ]
        assert build_event_graph(events).edges == ()


class TestRelations:
    """Each pass produces its own relation and weight."""

    def test_same_actor_same_entity_is_causal(self, make_event, base_time):
        events = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("github", "pr.updated", "alice", "pr_1", base_time + timedelta(minutes=30)),
        ]
        (edge,) = build_event_graph(events).edges
        assert edge.relation == "causal"
        assert edge.time_delta_ms == 30 * 60 * 1000
        assert edge.weight == pytest.approx(0.75)

    def test_same_entity_beyond_causal_window_is_same_actor(self, make_event, base_time):
        events = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("github", "pr.updated", "alice", "pr_1", base_time + timedelta(hours=3)),
        ]
        (edge,) = build_event_graph(events).edges
        assert edge.relation == "same_actor"
        assert edge.weight == pytest.approx(0.25)

    def test_same_actor_outside_window_not_linked(self, make_event, base_time):
        events = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("github", "pr.opened", "alice", "pr_2", base_time + timedelta(hours=5)),
        ]
        assert build_event_graph(events).edges == ()

    def test_shared_entity_between_actors(self, make_event, base_time):
        events = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("github", "pr.reviewed", "bob", "pr_1", base_time + timedelta(hours=6)),
        ]
        (edge,) = build_event_graph(events).edges
        assert edge.relation == "same_entity"
        assert edge.weight == pytest.approx(0.75)

    def test_temporal_needs_different_sources(self, make_event, base_time):
        linked = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("slack", "message.sent", "bob", "msg_1", base_time + timedelta(minutes=30)),
        ]
        graph = build_event_graph(linked)
        (edge,) = graph.edges
        assert edge.relation == "temporal"
        assert edge.weight == pytest.approx(0.5)
        assert graph.stats.cross_system_edges == 1

        same_source = [
            make_event("github", "pr.opened", "alice", "pr_1", base_time),
            make_event("github", "pr.opened", "bob", "pr_2", base_time + timedelta(minutes=30)),
        ]
        assert build_event_graph(same_source).edges == ()

    @pytest.mark.parametrize("actor", ["system", "unknown"])
    def test_placeholder_actors_not_linked(self, make_event, base_time, actor):
        events = [
            make_event("linear", "cycle.started", actor, "cycle_1", base_time),
            make_event("linear", "cycle.completed", actor, "cycle_2", base_time + timedelta(minutes=10)),
        ]
        assert build_event_graph(events).edges == ()


class TestInputPolicies:
    """Duplicates, bad timestamps and builder options."""

    def test_duplicate_ids_keep_first(self, make_event, base_time):
        ev = make_event("github", "pr.opened", "alice", "pr_1", base_time)
        graph = build_event_graph([ev, ev, ev])
        assert graph.stats.node_count == 1

    def _bad_event(self):
        return OrgEvent.create(
            org_id="org_test",
            source="github",
            event_type="pr.opened",
            actor_id="alice",
            entity_type="pull_request",
            entity_id="pr_bad",
            timestamp="not-a-date",
        )

    def test_invalid_timestamp_skipped_by_default(self, make_event, base_time):
        events = [make_event("github", "pr.opened", "alice", "pr_1", base_time), self._bad_event()]
        graph = build_event_graph(events)
        assert graph.stats.node_count == 1
        assert graph.node(self._bad_event().id) is None

    def test_invalid_timestamp_strict_raises(self, make_event, base_time):
        bad = self._bad_event()
        events = [make_event("github", "pr.opened", "alice", "pr_1", base_time), bad]
        with pytest.raises(UpstreamDataError) as exc:
            build_event_graph(events, invalid_timestamps="strict")
        assert exc.value.event_id == bad.id

    def test_bad_builder_options(self):
        with pytest.raises(ConfigurationError):
            EventGraphBuilder(max_edges_per_node=0)
        with pytest.raises(ConfigurationError):
            EventGraphBuilder(invalid_timestamps="lenient")

    def test_builds_are_independent(self, cross_system_events):
        builder = EventGraphBuilder(max_edges_per_node=2)
        first = builder.build(cross_system_events)
        second = builder.build(cross_system_events)
        assert first.to_dict() == second.to_dict()
