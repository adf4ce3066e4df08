from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..errors import UpstreamDataError
from ..events.types import parse_timestamp_ms

EdgeRelation = Literal["temporal", "same_actor", "same_entity", "causal"]
EDGE_RELATIONS: tuple[str, ...] = ("temporal", "same_actor", "same_entity", "causal")


@dataclass(frozen=True)
class EventGraphNode:
    event_id: str
    source: str
    event_type: str
    actor_id: str
    entity_type: str
    entity_id: str
    timestamp: str
    timestamp_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "source": self.source,
            "eventType": self.event_type,
            "actorId": self.actor_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "timestamp": self.timestamp,
            "timestampMs": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EventGraphNode":
        ts_ms = d.get("timestampMs")
        return cls(
            event_id=d["eventId"],
            source=d["source"],
            event_type=d["eventType"],
            actor_id=d["actorId"],
            entity_type=d["entityType"],
            entity_id=d["entityId"],
            timestamp=d["timestamp"],
            timestamp_ms=int(ts_ms) if ts_ms is not None else parse_timestamp_ms(d["timestamp"]),
        )


@dataclass(frozen=True)
class EventGraphEdge:
    from_id: str
    to_id: str
    relation: EdgeRelation
    weight: float          # 0-1, closer in time = stronger
    time_delta_ms: int     # always > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_id,
            "to": self.to_id,
            "relation": self.relation,
            "weight": self.weight,
            "timeDeltaMs": self.time_delta_ms,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EventGraphEdge":
        if d["relation"] not in EDGE_RELATIONS:
            raise UpstreamDataError(f"unknown edge relation {d['relation']!r}")
        return cls(
            from_id=d["from"],
            to_id=d["to"],
            relation=d["relation"],
            weight=float(d["weight"]),
            time_delta_ms=int(d["timeDeltaMs"]),
        )


@dataclass(frozen=True)
class GraphStats:
    node_count: int = 0
    edge_count: int = 0
    unique_actors: int = 0
    unique_entities: int = 0
    unique_event_types: int = 0
    cross_system_edges: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
            "uniqueActors": self.unique_actors,
            "uniqueEntities": self.unique_entities,
            "uniqueEventTypes": self.unique_event_types,
            "crossSystemEdges": self.cross_system_edges,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "GraphStats":
        return cls(
            node_count=int(d.get("nodeCount", 0)),
            edge_count=int(d.get("edgeCount", 0)),
            unique_actors=int(d.get("uniqueActors", 0)),
            unique_entities=int(d.get("uniqueEntities", 0)),
            unique_event_types=int(d.get("uniqueEventTypes", 0)),
            cross_system_edges=int(d.get("crossSystemEdges", 0)),
        )


@dataclass(frozen=True)
class EventGraph:
    """Temporal graph over organizational events.

    Nodes are events in time order; edges only point forward in time. The
    indices map actor id / entity id / event type to time-ordered event ids.
    """

    nodes: tuple[EventGraphNode, ...] = ()
    edges: tuple[EventGraphEdge, ...] = ()
    actor_index: dict[str, tuple[str, ...]] = field(default_factory=dict)
    entity_index: dict[str, tuple[str, ...]] = field(default_factory=dict)
    event_type_index: dict[str, tuple[str, ...]] = field(default_factory=dict)
    stats: GraphStats = field(default_factory=GraphStats)
    _by_id: dict[str, EventGraphNode] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {n.event_id: n for n in self.nodes})

    def node(self, event_id: str) -> EventGraphNode | None:
        return self._by_id.get(event_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "actorIndex": {k: list(v) for k, v in self.actor_index.items()},
            "entityIndex": {k: list(v) for k, v in self.entity_index.items()},
            "eventTypeIndex": {k: list(v) for k, v in self.event_type_index.items()},
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EventGraph":
        return cls(
            nodes=tuple(EventGraphNode.from_dict(n) for n in d.get("nodes", [])),
            edges=tuple(EventGraphEdge.from_dict(e) for e in d.get("edges", [])),
            actor_index={k: tuple(v) for k, v in d.get("actorIndex", {}).items()},
            entity_index={k: tuple(v) for k, v in d.get("entityIndex", {}).items()},
            event_type_index={k: tuple(v) for k, v in d.get("eventTypeIndex", {}).items()},
            stats=GraphStats.from_dict(d.get("stats", {})),
        )
