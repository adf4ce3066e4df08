"""Skill graph schema: compiled behavioral patterns as versioned DAGs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..errors import SkillGraphError

SkillNodeType = Literal["trigger", "action", "condition", "transform", "wait", "notify"]
SkillStatus = Literal["draft", "compiled", "active", "archived"]
SKILL_NODE_TYPES = ("trigger", "action", "condition", "transform", "wait", "notify")


@dataclass(frozen=True)
class SkillNode:
    id: str
    type: SkillNodeType
    description: str
    event_type: str | None = None   # trigger/action nodes only
    source: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    optional: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.event_type is not None:
            out["eventType"] = self.event_type
        if self.source is not None:
            out["source"] = self.source
        out.update({"description": self.description, "config": dict(self.config), "optional": self.optional})
        return out

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SkillNode":
        return cls(
            id=d["id"],
            type=d["type"],
            description=d.get("description", ""),
            event_type=d.get("eventType"),
            source=d.get("source"),
            config=dict(d.get("config") or {}),
            optional=bool(d.get("optional", False)),
        )


@dataclass(frozen=True)
class SkillEdge:
    from_id: str
    to_id: str
    condition: str | None = None   # None = unconditional
    avg_delay_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"from": self.from_id, "to": self.to_id}
        if self.condition is not None:
            out["condition"] = self.condition
        if self.avg_delay_ms is not None:
            out["avgDelayMs"] = self.avg_delay_ms
        return out

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SkillEdge":
        return cls(from_id=d["from"], to_id=d["to"], condition=d.get("condition"), avg_delay_ms=d.get("avgDelayMs"))


@dataclass(frozen=True)
class SkillTrigger:
    event_type: str
    source: str
    condition: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"eventType": self.event_type, "source": self.source, "condition": dict(self.condition)}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SkillTrigger":
        return cls(event_type=d["eventType"], source=d["source"], condition=dict(d.get("condition") or {}))


@dataclass(frozen=True)
class SkillMetadata:
    frequency: int
    confidence: float
    entropy: float
    cross_system: bool
    actor_count: int
    source_pattern: str
    integrations: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency,
            "confidence": self.confidence,
            "entropy": self.entropy,
            "crossSystem": self.cross_system,
            "actorCount": self.actor_count,
            "sourcePattern": self.source_pattern,
            "integrations": list(self.integrations),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SkillMetadata":
        return cls(
            frequency=int(d["frequency"]),
            confidence=float(d["confidence"]),
            entropy=float(d["entropy"]),
            cross_system=bool(d["crossSystem"]),
            actor_count=int(d["actorCount"]),
            source_pattern=d["sourcePattern"],
            integrations=tuple(d.get("integrations", [])),
        )


@dataclass(frozen=True)
class SkillGraph:
    id: str
    name: str
    description: str
    trigger: SkillTrigger
    nodes: tuple[SkillNode, ...]
    edges: tuple[SkillEdge, ...]
    metadata: SkillMetadata
    version: int = 1
    status: SkillStatus = "draft"
    compiled_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "trigger": self.trigger.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "metadata": self.metadata.to_dict(),
            "status": self.status,
        }
        if self.compiled_at is not None:
            out["compiledAt"] = self.compiled_at
        return out

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SkillGraph":
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description", ""),
            trigger=SkillTrigger.from_dict(d["trigger"]),
            nodes=tuple(SkillNode.from_dict(n) for n in d.get("nodes", [])),
            edges=tuple(SkillEdge.from_dict(e) for e in d.get("edges", [])),
            metadata=SkillMetadata.from_dict(d["metadata"]),
            version=int(d.get("version", 1)),
            status=d.get("status", "draft"),
            compiled_at=d.get("compiledAt"),
        )


def skill_graph_problems(skill: SkillGraph) -> list[str]:
    """Everything that keeps ``skill`` from being a single-trigger DAG. Empty when valid."""
    problems: list[str] = []

    ids = [n.id for n in skill.nodes]
    known = set(ids)
    if len(known) != len(ids):
        problems.append("duplicate node ids")

    bad_types = sorted({n.type for n in skill.nodes if n.type not in SKILL_NODE_TYPES})
    if bad_types:
        problems.append(f"unknown node types: {', '.join(bad_types)}")

    triggers = [n.id for n in skill.nodes if n.type == "trigger"]
    if len(triggers) != 1:
        problems.append(f"expected exactly one trigger node, found {len(triggers)}")

    for e in skill.edges:
        if e.from_id not in known or e.to_id not in known:
            problems.append(f"edge {e.from_id} -> {e.to_id} references an unknown node")
    if problems:
        return problems

    # Kahn: a cycle leaves nodes with in-degree > 0
    indegree = {nid: 0 for nid in ids}
    out: dict[str, list[str]] = {nid: [] for nid in ids}
    for e in skill.edges:
        indegree[e.to_id] += 1
        out[e.from_id].append(e.to_id)
    ready = [nid for nid in ids if indegree[nid] == 0]
    seen = 0
    while ready:
        nid = ready.pop()
        seen += 1
        for nxt in out[nid]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                ready.append(nxt)
    if seen != len(ids):
        problems.append("graph contains a cycle")
    return problems


def validate_skill_graph(skill: SkillGraph) -> SkillGraph:
    problems = skill_graph_problems(skill)
    if problems:
        raise SkillGraphError(skill.id, problems)
    return skill
