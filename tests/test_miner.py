"""Tests for structural pattern mining."""
from datetime import timedelta

import pytest

from sgm.errors import ConfigurationError
from sgm.graph.builder import build_event_graph
from sgm.graph.types import EventGraph
from sgm.mining.miner import PatternMiner, compute_out_degree, identify_anchors, mine_patterns
from sgm.mining.types import MiningConfig

pytestmark = pytest.mark.unit


class TestCrossSystemScenario:
    """Four actors repeating the same github -> slack -> linear chain."""

    def test_exactly_one_pattern(self, cross_system_events):
        patterns = mine_patterns(build_event_graph(cross_system_events))
        assert len(patterns) == 1
        p = patterns[0]
        assert p.anchor_event == "pr.opened"
        assert p.anchor_source == "github"
        assert p.frequency == 4
        assert p.confidence == 1.0
        assert p.cross_system is True
        assert p.actors == ("user_0", "user_1", "user_2", "user_3")

    def test_steps_and_delays(self, cross_system_events):
        (p,) = mine_patterns(build_event_graph(cross_system_events))
        assert [(s.source, s.event_type) for s in p.sequence] == [
            ("slack", "message.sent"),
            ("linear", "issue.created"),
        ]
        assert p.sequence[0].avg_delay_ms == 5 * 60 * 1000
        assert p.sequence[1].avg_delay_ms == 2 * 60 * 60 * 1000
        assert all(s.std_dev_ms == 0 and not s.optional for s in p.sequence)
        assert p.entropy == 0.0
        assert len(p.instances) == 4

    def test_name(self, cross_system_events):
        (p,) = mine_patterns(build_event_graph(cross_system_events))
        assert p.name == "Pr Opened → Message Sent → Issue Created"

    def test_anchor_selection_keeps_best_half(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        # pr.opened (out-degree 8) beats message.sent (4); issue.created has no outgoing edges
        assert identify_anchors(graph, compute_out_degree(graph)) == ["pr.opened"]


class TestMiningProperties:
    """Determinism and bounds that hold for any input."""

    def test_idempotent(self, cross_system_events, optional_step_events):
        graph = build_event_graph(optional_step_events)
        assert mine_patterns(graph) == mine_patterns(graph)
        first = [p.to_dict() for p in mine_patterns(build_event_graph(cross_system_events))]
        second = [p.to_dict() for p in mine_patterns(build_event_graph(cross_system_events))]
        assert first == second

    def test_pattern_id_is_stable_across_runs(self, cross_system_events):
        (a,) = mine_patterns(build_event_graph(cross_system_events))
        (b,) = mine_patterns(build_event_graph(list(reversed(cross_system_events))))
        assert a.id == b.id
        assert a.id.startswith("pattern_")

    def test_confidence_bound(self, optional_step_events):
        graph = build_event_graph(optional_step_events)
        patterns = mine_patterns(graph, {"min_confidence": 0.0, "min_frequency": 1})
        assert patterns
        for p in patterns:
            assert 0.0 <= p.confidence <= 1.0
            assert p.frequency <= len(graph.event_type_index[p.anchor_event])

    def test_sorted_by_frequency(self, optional_step_events):
        patterns = mine_patterns(build_event_graph(optional_step_events))
        freqs = [p.frequency for p in patterns]
        assert freqs == sorted(freqs, reverse=True)

    def test_ids_unique(self, optional_step_events):
        patterns = mine_patterns(build_event_graph(optional_step_events), {"min_frequency": 1})
        ids = [p.id for p in patterns]
        assert len(ids) == len(set(ids))


class TestConfidenceAndAnchors:
    """Confidence is frequency over every anchor-type event in the graph."""

    def _with_unlinked_prs(self, events, make_event, base_time):
        # one pr.opened per actor, weeks later, with nothing to link to
        return events + [
            make_event(
                "github", "pr.opened", f"solo_{i}", f"pr_solo_{i}", base_time + timedelta(days=30 + i), "pull_request"
            )
            for i in range(4)
        ]

    def test_unlinked_anchor_events_lower_confidence(self, cross_system_events, make_event, base_time):
        graph = build_event_graph(self._with_unlinked_prs(cross_system_events, make_event, base_time))
        assert len(graph.event_type_index["pr.opened"]) == 8
        (p,) = mine_patterns(graph)
        assert p.frequency == 4
        assert p.confidence == 0.5

    def test_min_confidence_drops_pattern(self, cross_system_events, make_event, base_time):
        graph = build_event_graph(self._with_unlinked_prs(cross_system_events, make_event, base_time))
        assert mine_patterns(graph, {"min_confidence": 0.6}) == []
        assert len(mine_patterns(graph, {"min_confidence": 0.5})) == 1

    def test_two_occurrences_qualify_when_nothing_reaches_three(self, cross_system_events):
        # first two actors only: every event type is seen twice
        graph = build_event_graph(cross_system_events[:6])
        assert identify_anchors(graph, compute_out_degree(graph)) == ["pr.opened"]
        (p,) = mine_patterns(graph, {"min_frequency": 2})
        assert p.anchor_event == "pr.opened"
        assert p.frequency == 2
        assert p.confidence == 1.0


class TestOptionalSteps:
    """A step seen in 3 of 5 instances is optional; later steps are not."""

    def test_optional_middle_step(self, optional_step_events):
        patterns = mine_patterns(build_event_graph(optional_step_events))
        p = next(p for p in patterns if p.anchor_event == "pr.opened")
        assert p.frequency == 5
        assert [(s.event_type, s.optional) for s in p.sequence] == [
            ("message.sent", True),
            ("issue.created", False),
            ("review.requested", False),
        ]


class TestEdgeCasesAndConfig:
    """Empty graphs, thresholds and config validation."""

    def test_empty_graph(self):
        assert mine_patterns(EventGraph()) == []
        assert mine_patterns(build_event_graph([])) == []

    def test_min_frequency_filters(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        assert mine_patterns(graph, MiningConfig(min_frequency=5)) == []

    def test_short_window_breaks_chain(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        # the 2h step falls outside a 1h window, so walks stop after the message
        (p,) = mine_patterns(graph, {"sequence_window_ms": 60 * 60 * 1000})
        assert [s.event_type for s in p.sequence] == ["message.sent"]

    def test_max_sequence_length(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        (p,) = mine_patterns(graph, {"max_sequence_length": 2})
        assert len(p.sequence) == 1

    def test_camel_case_config_keys(self, cross_system_events):
        graph = build_event_graph(cross_system_events)
        assert mine_patterns(graph, {"minFrequency": 5}) == []

    @pytest.mark.parametrize(
        "bad",
        [
            {"sequence_window_ms": 0},
            {"min_frequency": -1},
            {"min_confidence": 1.5},
            {"min_confidence": -0.1},
            {"max_edit_distance": -1},
            {"max_sequence_length": 0},
            {"not_a_field": 1},
        ],
    )
    def test_bad_config_raises_before_mining(self, bad):
        with pytest.raises(ConfigurationError):
            mine_patterns(EventGraph(), bad)

    def test_pattern_miner_validates_on_init(self):
        with pytest.raises(ConfigurationError):
            PatternMiner({"min_confidence": 2})
        assert PatternMiner().mine(EventGraph()) == []
