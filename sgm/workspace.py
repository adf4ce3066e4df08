from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .compiler.schema import SkillGraph
from .events.types import OrgEvent
from .graph.types import EventGraph
from .mining.types import MinedPattern

WORKSPACE_TYPE = "skill_graph_workspace"


@dataclass(frozen=True)
class Workspace:
    """Everything one discovery run reads and writes for a workspace.

    Stage outputs are replaced wholesale on every run, never merged.
    """

    events: tuple[OrgEvent, ...] = ()
    event_graph: EventGraph | None = None
    mined_patterns: tuple[MinedPattern, ...] = ()
    compiled_skills: tuple[SkillGraph, ...] = ()
    last_sync: dict[str, str] = field(default_factory=dict)  # source -> ISO time of last ingestion

    @property
    def total_events(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": WORKSPACE_TYPE,
            "events": [e.to_dict() for e in self.events],
            "eventGraph": self.event_graph.to_dict() if self.event_graph is not None else None,
            "minedPatterns": [p.to_dict() for p in self.mined_patterns],
            "compiledSkills": [s.to_dict() for s in self.compiled_skills],
            "ingestionState": {"totalEvents": self.total_events, "lastSync": dict(self.last_sync)},
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Workspace":
        graph = d.get("eventGraph")
        return cls(
            events=tuple(OrgEvent.from_dict(e) for e in d.get("events", [])),
            event_graph=EventGraph.from_dict(graph) if graph else None,
            mined_patterns=tuple(MinedPattern.from_dict(p) for p in d.get("minedPatterns", [])),
            compiled_skills=tuple(SkillGraph.from_dict(s) for s in d.get("compiledSkills", [])),
            last_sync=dict((d.get("ingestionState") or {}).get("lastSync") or {}),
        )
