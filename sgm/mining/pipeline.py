"""Mining pipeline: event graph construction followed by pattern mining.

Input: a workspace with events. Output: the same workspace with
``event_graph`` and ``mined_patterns`` replaced. Compiling and saving skills
is the discovery workflow's job, not this pipeline's.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Literal

import structlog

from ..graph.builder import EventGraphBuilder
from ..workspace import Workspace
from .miner import mine_patterns
from .types import MiningConfig

logger = structlog.get_logger(__name__)

MiningStage = Literal["build_graph", "mine_patterns", "complete"]
StageStatus = Literal["running", "done", "error"]


@dataclass(frozen=True)
class MiningProgress:
    stage: MiningStage
    status: StageStatus
    message: str
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"stage": self.stage, "status": self.status, "message": self.message, "counts": dict(self.counts)}


OnMiningProgress = Callable[[MiningProgress], None]


def run_mining_pipeline(
    workspace: Workspace,
    config: MiningConfig | dict | None = None,
    on_progress: OnMiningProgress | None = None,
    *,
    builder: EventGraphBuilder | None = None,
) -> Workspace:
    config = MiningConfig.coerce(config)
    builder = builder or EventGraphBuilder()

    def emit(stage: MiningStage, status: StageStatus, message: str, **counts: int) -> None:
        if on_progress is not None:
            on_progress(MiningProgress(stage=stage, status=status, message=message, counts=counts))

    if not workspace.events:
        logger.info("mining_pipeline_skipped", reason="no_events")
        emit("complete", "done", "No events to mine.", patterns=0)
        return workspace

    logger.info("mining_pipeline_started", events=len(workspace.events))

    emit("build_graph", "running", f"Building event graph from {len(workspace.events)} events...")
    graph = builder.build(workspace.events)
    emit(
        "build_graph",
        "done",
        f"Event graph: {graph.stats.node_count} nodes, {graph.stats.edge_count} edges, "
        f"{graph.stats.cross_system_edges} cross-system",
        nodes=graph.stats.node_count,
        edges=graph.stats.edge_count,
        cross_system_edges=graph.stats.cross_system_edges,
    )

    emit("mine_patterns", "running", "Mining behavioral patterns...")
    patterns = mine_patterns(graph, config)
    cross = sum(1 for p in patterns if p.cross_system)
    emit(
        "mine_patterns",
        "done",
        f"Found {len(patterns)} patterns ({cross} cross-system)",
        patterns=len(patterns),
        cross_system=cross,
    )

    emit(
        "complete",
        "done",
        f"Mining complete: {len(patterns)} patterns discovered",
        patterns=len(patterns),
        cross_system=cross,
    )
    return replace(workspace, event_graph=graph, mined_patterns=tuple(patterns))
