"""Structural sequence mining: deterministic, no LLM.

 1. Anchors: event types with the most forward connectivity
 2. Sequences: greedy highest-weight forward walk from every anchor occurrence
 3. Clusters: token edit distance over ``source:eventType`` chains
 4. Statistics: frequency, confidence, per-step delays, entropy
 5. Filter on frequency and confidence
 6. Name from the anchor and the first steps
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, replace
from typing import Sequence

import structlog

from ..events.types import format_timestamp_ms
from ..graph.types import EventGraph, EventGraphNode
from .naming import generate_pattern_name
from .similarity import TOKEN_SEPARATOR, canonical_form, cluster_sequences
from .types import EventSequence, MinedPattern, MiningConfig, PatternStep, SequenceStep

logger = structlog.get_logger(__name__)

# A step seen in fewer than this share of a cluster's instances is optional.
OPTIONAL_STEP_THRESHOLD = 0.8

ANCHOR_MIN_OCCURRENCES = 3
ANCHOR_FALLBACK_MIN_OCCURRENCES = 2


@dataclass(frozen=True)
class _Hop:
    to_id: str
    weight: float
    time_delta_ms: int


def compute_out_degree(graph: EventGraph) -> dict[str, int]:
    """Forward edge count per event id, in first-seen edge order."""
    counts: dict[str, int] = {}
    for e in graph.edges:
        counts[e.from_id] = counts.get(e.from_id, 0) + 1
    return counts


def identify_anchors(graph: EventGraph, out_degree: dict[str, int]) -> list[str]:
    """Event types to start walks from.

    Per event type: summed out-degree and the number of its events that have
    any outgoing edge. Types seen at least 3 times qualify (2 when none do);
    the better-connected half (at least one) is kept.
    """
    type_out_degree: dict[str, int] = {}
    type_counts: dict[str, int] = {}
    for event_id, degree in out_degree.items():
        node = graph.node(event_id)
        if node is None:
            continue
        type_out_degree[node.event_type] = type_out_degree.get(node.event_type, 0) + degree
        type_counts[node.event_type] = type_counts.get(node.event_type, 0) + 1

    candidates = [t for t, c in type_counts.items() if c >= ANCHOR_MIN_OCCURRENCES]
    if not candidates:
        candidates = [t for t, c in type_counts.items() if c >= ANCHOR_FALLBACK_MIN_OCCURRENCES]
    if not candidates:
        return []

    # stable sort: equal out-degree keeps first-seen order
    candidates.sort(key=lambda t: -type_out_degree[t])
    return candidates[: max(1, math.ceil(len(candidates) * 0.5))]


def build_adjacency(graph: EventGraph) -> dict[str, list[_Hop]]:
    adj: dict[str, list[_Hop]] = {}
    for e in graph.edges:
        adj.setdefault(e.from_id, []).append(_Hop(e.to_id, e.weight, e.time_delta_ms))
    return adj


def extract_sequence(
    anchor: EventGraphNode,
    graph: EventGraph,
    adjacency: dict[str, list[_Hop]],
    window_ms: int,
    max_length: int,
) -> EventSequence:
    """Follow the strongest unvisited forward edge until nothing is left or the walk is full."""
    steps = [SequenceStep(anchor.event_type, anchor.source, 0)]
    visited = {anchor.event_id}
    current = anchor.event_id

    while len(steps) < max_length:
        best: _Hop | None = None
        for hop in adjacency.get(current, ()):
            if hop.to_id in visited or hop.time_delta_ms <= 0 or hop.time_delta_ms > window_ms:
                continue
            # strict '>' keeps the first edge on weight ties
            if best is None or hop.weight > best.weight:
                best = hop
        if best is None:
            break
        nxt = graph.node(best.to_id)
        if nxt is None:
            break
        visited.add(nxt.event_id)
        steps.append(SequenceStep(nxt.event_type, nxt.source, nxt.timestamp_ms - anchor.timestamp_ms))
        current = nxt.event_id

    return EventSequence(
        events=tuple(steps),
        actor_id=anchor.actor_id,
        start_time=anchor.timestamp,
        end_time=format_timestamp_ms(anchor.timestamp_ms + steps[-1].relative_time_ms),
    )


def _pattern_id(anchor_source: str, anchor_event: str, steps: Sequence[PatternStep]) -> str:
    key = f"{anchor_source}:{anchor_event}|" + TOKEN_SEPARATOR.join(f"{s.source}:{s.event_type}" for s in steps)
    return "pattern_" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]


def compute_pattern_stats(
    anchor_event: str,
    anchor_source: str,
    sequences: Sequence[EventSequence],
    total_anchor_occurrences: int,
) -> MinedPattern:
    frequency = len(sequences)
    confidence = frequency / total_anchor_occurrences if total_anchor_occurrences > 0 else 0.0

    # position 0 is the anchor; every later position gets a bucket keyed by (source, eventType)
    max_len = max(len(s.events) for s in sequences)
    steps: list[PatternStep] = []
    sources = {anchor_source}
    for pos in range(1, max_len):
        bucket: dict[tuple[str, str], list[int]] = {}
        for seq in sequences:
            if pos >= len(seq.events):
                continue
            step = seq.events[pos]
            bucket.setdefault((step.source, step.event_type), []).append(step.relative_time_ms)
        if not bucket:
            continue

        best_key, delays = None, []
        for key, ds in bucket.items():
            if len(ds) > len(delays):
                best_key, delays = key, ds
        source, event_type = best_key

        n = len(delays)
        avg = sum(delays) / n
        std = math.sqrt(sum((d - avg) ** 2 for d in delays) / (n - 1)) if n > 1 else 0.0
        sources.add(source)
        steps.append(
            PatternStep(
                event_type=event_type,
                source=source,
                avg_delay_ms=round(avg),
                std_dev_ms=round(std),
                optional=n < frequency * OPTIONAL_STEP_THRESHOLD,
            )
        )

    if steps:
        entropy = sum(s.std_dev_ms / s.avg_delay_ms if s.avg_delay_ms > 0 else 0.0 for s in steps) / len(steps)
    else:
        entropy = 0.0

    return MinedPattern(
        id=_pattern_id(anchor_source, anchor_event, steps),
        name=generate_pattern_name(anchor_event, steps),
        anchor_event=anchor_event,
        anchor_source=anchor_source,
        sequence=tuple(steps),
        frequency=frequency,
        actors=tuple(dict.fromkeys(s.actor_id for s in sequences)),
        confidence=round(confidence, 2),
        entropy=round(entropy, 2),
        cross_system=len(sources) > 1,
        instances=tuple(sequences),
    )


def mine_patterns(graph: EventGraph, config: MiningConfig | dict | None = None) -> list[MinedPattern]:
    """Mine recurring behavioral patterns, most frequent first.

    Raises ConfigurationError for a malformed config before touching the graph.
    """
    config = MiningConfig.coerce(config)
    if not graph.nodes:
        return []

    logger.info("mining_started", events=len(graph.nodes), edges=len(graph.edges))

    anchors = identify_anchors(graph, compute_out_degree(graph))
    logger.info("anchors_identified", count=len(anchors), anchors=anchors)

    adjacency = build_adjacency(graph)
    by_anchor: dict[str, list[EventSequence]] = {}
    raw = 0
    for anchor_type in anchors:
        for anchor_id in graph.event_type_index.get(anchor_type, ()):
            node = graph.node(anchor_id)
            if node is None:
                continue
            seq = extract_sequence(node, graph, adjacency, config.sequence_window_ms, config.max_sequence_length)
            if len(seq.events) >= 2:
                by_anchor.setdefault(anchor_type, []).append(seq)
                raw += 1
    logger.info("sequences_extracted", count=raw)

    patterns: list[MinedPattern] = []
    used_ids: set[str] = set()
    for anchor_type, sequences in by_anchor.items():
        canonicals = [canonical_form(s) for s in sequences]
        total = len(graph.event_type_index.get(anchor_type, ()))
        for indices in cluster_sequences(canonicals, config.max_edit_distance):
            if len(indices) < config.min_frequency:
                continue
            cluster = [sequences[i] for i in indices]
            pattern = compute_pattern_stats(anchor_type, cluster[0].events[0].source, cluster, total)
            if pattern.confidence < config.min_confidence:
                continue

            pid, k = pattern.id, 1
            while pid in used_ids:
                k += 1
                pid = f"{pattern.id}_{k}"
            used_ids.add(pid)
            patterns.append(replace(pattern, id=pid) if pid != pattern.id else pattern)

    patterns.sort(key=lambda p: -p.frequency)

    logger.info(
        "mining_finished",
        patterns=len(patterns),
        cross_system=sum(1 for p in patterns if p.cross_system),
    )
    return patterns


class PatternMiner:
    """Holds a MiningConfig so callers can mine several graphs with the same thresholds."""

    def __init__(self, config: MiningConfig | dict | None = None):
        self.config = MiningConfig.coerce(config)

    def mine(self, graph: EventGraph) -> list[MinedPattern]:
        return mine_patterns(graph, self.config)
