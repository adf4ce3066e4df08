"""Compile a MinedPattern into a SkillGraph DAG.

Mapping:
 - anchor event -> trigger node
 - each sequence step -> action node
 - long gaps (> 1 min, after the first step) -> wait node before the step
 - optional steps -> conditional edge in, plus a skip edge around them

Nodes and edges are only appended forward from the previous node, so the
result is acyclic by construction; validate_skill_graph re-checks it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

import structlog

from ..mining.naming import format_duration, format_event_type
from ..mining.types import MinedPattern
from .schema import SkillEdge, SkillGraph, SkillMetadata, SkillNode, SkillTrigger, validate_skill_graph

logger = structlog.get_logger(__name__)

WAIT_THRESHOLD_MS = 60_000
DEFAULT_MIN_CONFIDENCE = 0.3

TRIGGER_NODE_ID = "trigger_0"


def _step_id(index: int) -> str:
    return f"step_{index + 1}"


def generate_description(pattern: MinedPattern) -> str:
    steps = [format_event_type(pattern.anchor_event)]
    steps.extend(f"{format_event_type(s.event_type)} ({s.source})" for s in pattern.sequence)
    cross = " across multiple systems" if pattern.cross_system else ""
    actors = f" by {len(pattern.actors)} team members" if len(pattern.actors) > 1 else ""
    return (
        f"Recurring workflow{cross}: "
        + " → ".join(steps)
        + f". Observed {pattern.frequency} times{actors}"
        + f" with {round(pattern.confidence * 100)}% confidence."
    )


def compile_pattern_to_skill(pattern: MinedPattern, *, compiled_at: datetime | None = None) -> SkillGraph:
    nodes: list[SkillNode] = [
        SkillNode(
            id=TRIGGER_NODE_ID,
            type="trigger",
            event_type=pattern.anchor_event,
            source=pattern.anchor_source,
            description=f"Trigger: {format_event_type(pattern.anchor_event)}",
        )
    ]
    edges: list[SkillEdge] = []

    prev = TRIGGER_NODE_ID
    steps = pattern.sequence
    for i, step in enumerate(steps):
        node_id = _step_id(i)

        if step.avg_delay_ms > WAIT_THRESHOLD_MS and i > 0:
            wait_id = f"wait_{i}"
            nodes.append(
                SkillNode(
                    id=wait_id,
                    type="wait",
                    description=f"Wait ~{format_duration(step.avg_delay_ms)}",
                    config={"waitMs": step.avg_delay_ms},
                )
            )
            edges.append(SkillEdge(from_id=prev, to_id=wait_id, avg_delay_ms=0))
            prev = wait_id

        nodes.append(
            SkillNode(
                id=node_id,
                type="action",
                event_type=step.event_type,
                source=step.source,
                description=f"{format_event_type(step.event_type)} ({step.source})",
                optional=step.optional,
            )
        )

        if step.optional:
            edges.append(
                SkillEdge(from_id=prev, to_id=node_id, condition=f"optional_{i + 1}", avg_delay_ms=step.avg_delay_ms)
            )
            nxt = next((j for j in range(i + 1, len(steps)) if not steps[j].optional), None)
            if nxt is not None:
                edges.append(
                    SkillEdge(
                        from_id=prev,
                        to_id=_step_id(nxt),
                        condition=f"skip_optional_{i + 1}",
                        avg_delay_ms=steps[nxt].avg_delay_ms,
                    )
                )
        else:
            edges.append(SkillEdge(from_id=prev, to_id=node_id, avg_delay_ms=step.avg_delay_ms))

        prev = node_id

    integrations = tuple(dict.fromkeys([pattern.anchor_source, *(s.source for s in steps)]))
    when = compiled_at or datetime.now(timezone.utc)

    skill = SkillGraph(
        id=f"skill_{pattern.id}",
        name=pattern.name,
        description=generate_description(pattern),
        trigger=SkillTrigger(event_type=pattern.anchor_event, source=pattern.anchor_source),
        nodes=tuple(nodes),
        edges=tuple(edges),
        metadata=SkillMetadata(
            frequency=pattern.frequency,
            confidence=pattern.confidence,
            entropy=pattern.entropy,
            cross_system=pattern.cross_system,
            actor_count=len(pattern.actors),
            source_pattern=pattern.id,
            integrations=integrations,
        ),
        version=1,
        status="compiled",
        compiled_at=when.isoformat(),
    )
    # skip edges point at later step nodes, which exist once the loop is done
    return validate_skill_graph(skill)


def compile_all_patterns(
    patterns: Sequence[MinedPattern],
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    *,
    compiled_at: datetime | None = None,
) -> list[SkillGraph]:
    """Compile every pattern at or above ``min_confidence``, keeping input order."""
    skills = [
        compile_pattern_to_skill(p, compiled_at=compiled_at) for p in patterns if p.confidence >= min_confidence
    ]
    logger.info("skills_compiled", patterns=len(patterns), skills=len(skills), min_confidence=min_confidence)
    return skills


class SkillCompiler:
    def __init__(self, min_confidence: float = DEFAULT_MIN_CONFIDENCE):
        self.min_confidence = min_confidence

    def compile(self, pattern: MinedPattern) -> SkillGraph:
        return compile_pattern_to_skill(pattern)

    def compile_all(self, patterns: Sequence[MinedPattern]) -> list[SkillGraph]:
        return compile_all_patterns(patterns, self.min_confidence)
