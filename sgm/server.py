from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .settings import Settings
from .log import configure_logging
from .errors import ConfigurationError, SkillGraphError, StoreError, UpstreamDataError
from .events.types import events_from_dicts
from .graph.builder import EventGraphBuilder
from .mining.miner import mine_patterns
from .mining.types import MiningConfig, patterns_from_dicts
from .compiler.compile import compile_all_patterns
from .compiler.versioning import SkillStore
from .discovery import DiscoveryProgress, run_auto_discovery
from .store_memory import MemorySkillStore
from .store_sqlite import SQLiteSkillStore

logger = structlog.get_logger(__name__)


@dataclass
class AppState:
    settings: Settings
    store: SkillStore
    builder: EventGraphBuilder


def make_state(settings: Settings | None = None) -> AppState:
    st = settings or Settings()
    configure_logging(st.log_level, st.json_logs)

    if st.store_backend == "memory":
        store = MemorySkillStore(st)
    else:
        store = SQLiteSkillStore(st)
    store.ensure_schema()

    return AppState(settings=st, store=store, builder=EventGraphBuilder.from_settings(st))


app = FastAPI(title="skill-graph-miner", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Created on first request so importing the module never opens a database.
STATE: AppState | None = None


def state() -> AppState:
    global STATE
    if STATE is None:
        STATE = make_state()
    return STATE


@app.exception_handler(ConfigurationError)
@app.exception_handler(UpstreamDataError)
@app.exception_handler(SkillGraphError)
async def invalid_input_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("request_rejected", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(status_code=422, content={"error": type(exc).__name__, "detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("store_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"error": "StoreError", "detail": str(exc)})


def _config(body: dict) -> MiningConfig:
    raw = body.get("config")
    if raw is None:
        return MiningConfig.from_settings(state().settings)
    return MiningConfig.coerce(raw)


def _min_confidence(body: dict) -> float:
    raw = body.get("minConfidence", state().settings.min_confidence)
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"minConfidence must be a number, got {raw!r}") from e


def _events(body: dict) -> list:
    items = body.get("events", [])
    if not isinstance(items, list):
        raise UpstreamDataError("'events' must be a JSON array of OrgEvents")
    return events_from_dicts(items)


@app.get("/health")
def health():
    st = state().settings
    return {
        "ok": True,
        "store_backend": st.store_backend,
        "invalid_timestamps": st.invalid_timestamps,
        "max_edges_per_node": st.max_edges_per_node,
    }


@app.post("/graph")
def graph(body: dict):
    """Build an event graph.

    body: {"events": [OrgEvent, ...]}
    """
    g = state().builder.build(_events(body))
    return g.to_dict()


@app.post("/mine")
def mine(body: dict):
    """Build the event graph and mine patterns in one call.

    body:
      {
        "events": [OrgEvent, ...],
        "config": {"sequenceWindowMs": ..., "minFrequency": ..., ...} (optional)
      }
    """
    config = _config(body)
    g = state().builder.build(_events(body))
    patterns = mine_patterns(g, config)
    return {"stats": g.stats.to_dict(), "patterns": [p.to_dict() for p in patterns]}


@app.post("/compile")
def compile_patterns(body: dict):
    """body: {"patterns": [MinedPattern, ...], "minConfidence": 0.3 (optional)}"""
    min_conf = _min_confidence(body)
    patterns = patterns_from_dicts(body.get("patterns", []))
    skills = compile_all_patterns(patterns, min_conf)
    return {"skills": [s.to_dict() for s in skills]}


@app.post("/discover/{workspace_id}")
def discover(workspace_id: str, body: dict | None = None):
    """Run auto-discovery for a workspace and persist new skill versions.

    body (optional):
      {
        "records": {"github": [...], "slack": [...]},
        "events": [OrgEvent, ...],
        "orgId": "...",
        "config": {...},
        "minConfidence": 0.3
      }
    """
    body = body or {}
    progress: list[dict[str, Any]] = []

    def collect(p: DiscoveryProgress) -> None:
        progress.append(p.to_dict())

    ws = run_auto_discovery(
        workspace_id,
        state().store,
        settings=state().settings,
        records_by_source=body.get("records") or None,
        events=_events(body) if body.get("events") else None,
        org_id=body.get("orgId", "default"),
        config=body.get("config"),
        min_confidence=_min_confidence(body) if "minConfidence" in body else None,
        on_progress=collect,
    )
    return {
        "ok": True,
        "workspaceId": workspace_id,
        "totalEvents": ws.total_events,
        "patterns": len(ws.mined_patterns),
        "skills": [s.to_dict() for s in ws.compiled_skills],
        "progress": progress,
    }


@app.get("/skills/{workspace_id}")
def skills(workspace_id: str, skill_id: str | None = None, limit: int = 50):
    versions = state().store.list_versions(workspace_id, skill_id, limit=limit)
    return {"workspaceId": workspace_id, "versions": [v.to_dict() for v in versions]}
