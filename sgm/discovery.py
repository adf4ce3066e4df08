from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal

import structlog

from .compiler.compile import compile_all_patterns
from .compiler.versioning import SkillStore
from .errors import StoreError
from .events.ingest import merge_events
from .events.normalize import normalize_records
from .events.types import OrgEvent
from .graph.builder import EventGraphBuilder
from .mining.pipeline import MiningProgress, run_mining_pipeline
from .mining.types import MiningConfig
from .settings import Settings
from .workspace import Workspace

logger = structlog.get_logger(__name__)

DiscoveryStage = Literal["ingestion", "mining", "compilation", "saving", "complete"]


@dataclass(frozen=True)
class DiscoveryProgress:
    stage: DiscoveryStage
    status: Literal["running", "done", "error"]
    message: str
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "status": self.status, "message": self.message, "detail": dict(self.detail)}


OnDiscoveryProgress = Callable[[DiscoveryProgress], None]


@dataclass
class Discovery:
    """Full auto-discovery run for one workspace: ingest -> mine -> compile -> save.

    Mining and compilation are pure; this is the layer that touches the store.
    A failed stage saves the partial workspace and re-raises.
    """

    store: SkillStore
    settings: Settings = field(default_factory=Settings)

    def run(
        self,
        workspace_id: str,
        *,
        records_by_source: dict[str, list[Any]] | None = None,
        events: Iterable[OrgEvent] | None = None,
        org_id: str = "default",
        config: MiningConfig | dict | None = None,
        min_confidence: float | None = None,
        on_progress: OnDiscoveryProgress | None = None,
    ) -> Workspace:
        config = MiningConfig.coerce(config) if config is not None else MiningConfig.from_settings(self.settings)
        min_conf = self.settings.min_confidence if min_confidence is None else min_confidence

        def emit(stage: DiscoveryStage, status: str, message: str, **detail: Any) -> None:
            if on_progress is not None:
                on_progress(DiscoveryProgress(stage=stage, status=status, message=message, detail=detail))

        log = logger.bind(workspace_id=workspace_id)
        workspace = self.store.load_workspace(workspace_id) or Workspace()
        log.info("discovery_started", events=workspace.total_events)

        # 1) ingestion
        if records_by_source or events:
            emit("ingestion", "running", f"Ingesting records from {len(records_by_source or {})} sources...")
            try:
                workspace = self._ingest(workspace, records_by_source or {}, list(events or ()), org_id)
            except Exception as e:
                log.error("discovery_stage_failed", stage="ingestion", error=str(e))
                emit("ingestion", "error", f"Ingestion failed: {e}")
                self.store.save_workspace(workspace_id, workspace)
                raise
            emit("ingestion", "done", f"Ingested {workspace.total_events} events", total_events=workspace.total_events)

        # 2) mining
        emit("mining", "running", "Mining behavioral patterns...")

        def forward(p: MiningProgress) -> None:
            emit("mining", p.status, p.message, pipeline_stage=p.stage, **p.counts)

        try:
            workspace = run_mining_pipeline(
                workspace,
                config,
                forward,
                builder=EventGraphBuilder.from_settings(self.settings),
            )
        except Exception as e:
            log.error("discovery_stage_failed", stage="mining", error=str(e))
            emit("mining", "error", f"Mining failed: {e}")
            self.store.save_workspace(workspace_id, workspace)
            raise
        emit("mining", "done", f"Found {len(workspace.mined_patterns)} patterns")

        # 3) compilation
        emit("compilation", "running", "Compiling skill graphs...")
        skills = compile_all_patterns(workspace.mined_patterns, min_conf)
        workspace = replace(workspace, compiled_skills=tuple(skills))
        emit("compilation", "done", f"Compiled {len(skills)} skill graphs", skills=len(skills))

        # 4) save workspace, then one new version per skill
        emit("saving", "running", "Saving workspace and skill versions...")
        self.store.save_workspace(workspace_id, workspace)
        saved = 0
        for skill in skills:
            try:
                self.store.save_version(workspace_id, skill)
                saved += 1
            except StoreError as e:
                log.warning("skill_version_save_failed", skill_id=skill.id, error=str(e))
        emit("saving", "done", f"Saved {saved} of {len(skills)} skill versions", saved=saved)

        emit(
            "complete",
            "done",
            f"Discovery complete: {workspace.total_events} events → "
            f"{len(workspace.mined_patterns)} patterns → {len(skills)} skills",
        )
        log.info(
            "discovery_finished",
            events=workspace.total_events,
            patterns=len(workspace.mined_patterns),
            skills=len(skills),
            saved_versions=saved,
        )
        return workspace

    def _ingest(
        self,
        workspace: Workspace,
        records_by_source: dict[str, list[Any]],
        canonical: list[OrgEvent],
        org_id: str,
    ) -> Workspace:
        cap = self.settings.max_events_per_workspace
        events = list(workspace.events)
        last_sync = dict(workspace.last_sync)
        now = datetime.now(timezone.utc).isoformat()
        if canonical:
            events, added = merge_events(events, canonical, cap=cap)
            logger.info("events_ingested", events=len(canonical), new_events=added)
        for source, records in records_by_source.items():
            incoming = normalize_records(source, records, org_id)
            events, added = merge_events(events, incoming, cap=cap)
            last_sync[source] = now
            logger.info("source_ingested", source=source, records=len(records), new_events=added)
        return replace(workspace, events=tuple(events), last_sync=last_sync)


def run_auto_discovery(
    workspace_id: str,
    store: SkillStore,
    records_by_source: dict[str, list[Any]] | None = None,
    *,
    events: Iterable[OrgEvent] | None = None,
    org_id: str = "default",
    config: MiningConfig | dict | None = None,
    min_confidence: float | None = None,
    on_progress: OnDiscoveryProgress | None = None,
    settings: Settings | None = None,
) -> Workspace:
    return Discovery(store=store, settings=settings or Settings()).run(
        workspace_id,
        records_by_source=records_by_source,
        events=events,
        org_id=org_id,
        config=config,
        min_confidence=min_confidence,
        on_progress=on_progress,
    )
