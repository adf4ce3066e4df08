"""Build the organizational event graph from canonical events.

Deterministic, no LLM:
 1. Parse timestamps, drop duplicate ids, sort by (time, id)
 2. One node per event, plus actor / entity / event-type indices
 3. Edges in three fixed passes, each windowed:
    same actor (causal when the entity is shared too), same entity, temporal
 4. Stats

Every node carries at most ``max_edges_per_node`` incident edges. Once a node
is full, later edges touching it are dropped, so pass order and time order
decide which edges survive.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from ..errors import ConfigurationError, UpstreamDataError
from ..events.types import OrgEvent, parse_timestamp_ms
from ..settings import Settings
from .types import EdgeRelation, EventGraph, EventGraphEdge, EventGraphNode, GraphStats

logger = structlog.get_logger(__name__)

TEMPORAL_WINDOW_MS = 60 * 60 * 1000          # 1 hour
SAME_ACTOR_WINDOW_MS = 4 * 60 * 60 * 1000    # 4 hours
SAME_ENTITY_WINDOW_MS = 24 * 60 * 60 * 1000  # 24 hours
CAUSAL_WINDOW_MS = 2 * 60 * 60 * 1000        # 2 hours

MAX_EDGES_PER_NODE = 20

# Placeholder actors from normalizers; linking their events would connect unrelated work.
IGNORED_ACTORS = frozenset({"unknown", "system"})

INVALID_TIMESTAMP_POLICIES = ("skip", "strict")


class _EdgeArena:
    """Edge list and degree counters owned by a single build() call."""

    def __init__(self, cap: int):
        self.cap = cap
        self.edges: list[EventGraphEdge] = []
        self.degree: dict[str, int] = {}
        self.dropped = 0

    def add(
        self,
        a: EventGraphNode,
        b: EventGraphNode,
        relation: EdgeRelation,
        delta_ms: int,
        window_ms: int,
    ) -> None:
        da = self.degree.get(a.event_id, 0)
        db = self.degree.get(b.event_id, 0)
        if da >= self.cap or db >= self.cap:
            self.dropped += 1
            return
        self.edges.append(
            EventGraphEdge(
                from_id=a.event_id,
                to_id=b.event_id,
                relation=relation,
                weight=1 - delta_ms / window_ms,
                time_delta_ms=delta_ms,
            )
        )
        self.degree[a.event_id] = da + 1
        self.degree[b.event_id] = db + 1


class EventGraphBuilder:
    def __init__(self, *, max_edges_per_node: int = MAX_EDGES_PER_NODE, invalid_timestamps: str = "skip"):
        if max_edges_per_node < 1:
            raise ConfigurationError(f"max_edges_per_node must be >= 1, got {max_edges_per_node}")
        if invalid_timestamps not in INVALID_TIMESTAMP_POLICIES:
            raise ConfigurationError(
                f"invalid_timestamps must be one of {INVALID_TIMESTAMP_POLICIES}, got {invalid_timestamps!r}"
            )
        self.max_edges_per_node = max_edges_per_node
        self.invalid_timestamps = invalid_timestamps

    @classmethod
    def from_settings(cls, settings: Settings) -> "EventGraphBuilder":
        return cls(
            max_edges_per_node=settings.max_edges_per_node,
            invalid_timestamps=settings.invalid_timestamps,
        )

    def build(self, events: Iterable[OrgEvent]) -> EventGraph:
        nodes = self._project(events)
        if not nodes:
            return EventGraph()

        actor_index: dict[str, list[EventGraphNode]] = {}
        entity_index: dict[str, list[EventGraphNode]] = {}
        type_index: dict[str, list[EventGraphNode]] = {}
        for n in nodes:
            actor_index.setdefault(n.actor_id, []).append(n)
            entity_index.setdefault(n.entity_id, []).append(n)
            type_index.setdefault(n.event_type, []).append(n)

        arena = _EdgeArena(self.max_edges_per_node)
        self._same_actor_pass(arena, actor_index)
        self._same_entity_pass(arena, entity_index)
        self._temporal_pass(arena, nodes)

        by_id = {n.event_id: n for n in nodes}
        cross = sum(1 for e in arena.edges if by_id[e.from_id].source != by_id[e.to_id].source)
        stats = GraphStats(
            node_count=len(nodes),
            edge_count=len(arena.edges),
            unique_actors=len(actor_index),
            unique_entities=len(entity_index),
            unique_event_types=len(type_index),
            cross_system_edges=cross,
        )

        logger.info(
            "event_graph_built",
            nodes=stats.node_count,
            edges=stats.edge_count,
            cross_system_edges=stats.cross_system_edges,
            actors=stats.unique_actors,
            event_types=stats.unique_event_types,
            dropped_edges=arena.dropped,
        )

        def ids(index: dict[str, list[EventGraphNode]]) -> dict[str, tuple[str, ...]]:
            return {k: tuple(n.event_id for n in v) for k, v in index.items()}

        return EventGraph(
            nodes=tuple(nodes),
            edges=tuple(arena.edges),
            actor_index=ids(actor_index),
            entity_index=ids(entity_index),
            event_type_index=ids(type_index),
            stats=stats,
        )

    def _project(self, events: Iterable[OrgEvent]) -> list[EventGraphNode]:
        seen: set[str] = set()
        nodes: list[EventGraphNode] = []
        skipped = 0
        for ev in events:
            if ev.id in seen:
                continue
            try:
                ts_ms = parse_timestamp_ms(ev.timestamp)
            except ValueError as e:
                if self.invalid_timestamps == "strict":
                    raise UpstreamDataError(f"unparseable timestamp {ev.timestamp!r}", event_id=ev.id) from e
                logger.debug("event_skipped_invalid_timestamp", event_id=ev.id, timestamp=ev.timestamp)
                skipped += 1
                continue
            seen.add(ev.id)
            nodes.append(
                EventGraphNode(
                    event_id=ev.id,
                    source=ev.source,
                    event_type=ev.event_type,
                    actor_id=ev.actor_id,
                    entity_type=ev.entity_type,
                    entity_id=ev.entity_id,
                    timestamp=ev.timestamp,
                    timestamp_ms=ts_ms,
                )
            )
        if skipped:
            logger.warning("events_skipped", count=skipped, reason="invalid_timestamp")
        nodes.sort(key=lambda n: (n.timestamp_ms, n.event_id))
        return nodes

    @staticmethod
    def _same_actor_pass(arena: _EdgeArena, actor_index: dict[str, list[EventGraphNode]]) -> None:
        for actor_id, trail in actor_index.items():
            if actor_id in IGNORED_ACTORS:
                continue
            for i, a in enumerate(trail):
                for j in range(i + 1, len(trail)):
                    b = trail[j]
                    delta = b.timestamp_ms - a.timestamp_ms
                    if delta > SAME_ACTOR_WINDOW_MS:
                        break
                    if delta <= 0:
                        continue
                    if a.entity_id == b.entity_id and delta <= CAUSAL_WINDOW_MS:
                        arena.add(a, b, "causal", delta, CAUSAL_WINDOW_MS)
                    else:
                        arena.add(a, b, "same_actor", delta, SAME_ACTOR_WINDOW_MS)

    @staticmethod
    def _same_entity_pass(arena: _EdgeArena, entity_index: dict[str, list[EventGraphNode]]) -> None:
        for trail in entity_index.values():
            if len(trail) < 2:
                continue
            for i, a in enumerate(trail):
                for j in range(i + 1, len(trail)):
                    b = trail[j]
                    delta = b.timestamp_ms - a.timestamp_ms
                    if delta > SAME_ENTITY_WINDOW_MS:
                        break
                    if delta <= 0:
                        continue
                    # same-actor pairs were linked by the actor pass
                    if a.actor_id == b.actor_id:
                        continue
                    arena.add(a, b, "same_entity", delta, SAME_ENTITY_WINDOW_MS)

    @staticmethod
    def _temporal_pass(arena: _EdgeArena, nodes: list[EventGraphNode]) -> None:
        for i, a in enumerate(nodes):
            for j in range(i + 1, len(nodes)):
                b = nodes[j]
                delta = b.timestamp_ms - a.timestamp_ms
                if delta > TEMPORAL_WINDOW_MS:
                    break
                if delta <= 0:
                    continue
                if a.source == b.source or a.actor_id == b.actor_id or a.entity_id == b.entity_id:
                    continue
                arena.add(a, b, "temporal", delta, TEMPORAL_WINDOW_MS)


def build_event_graph(
    events: Iterable[OrgEvent],
    *,
    max_edges_per_node: int = MAX_EDGES_PER_NODE,
    invalid_timestamps: str = "skip",
) -> EventGraph:
    return EventGraphBuilder(
        max_edges_per_node=max_edges_per_node, invalid_timestamps=invalid_timestamps
    ).build(events)
