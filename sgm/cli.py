import json
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich import print
from rich.markup import escape
from rich.table import Table
from dotenv import load_dotenv

from .settings import Settings
from .log import configure_logging
from .errors import SkillGraphMinerError
from .events.types import events_from_dicts
from .events.normalize import normalize_records
from .graph.builder import EventGraphBuilder
from .mining.miner import mine_patterns
from .mining.types import MiningConfig, patterns_from_dicts
from .compiler.compile import compile_all_patterns
from .discovery import DiscoveryProgress, run_auto_discovery
from .store_memory import MemorySkillStore
from .store_sqlite import SQLiteSkillStore

app = typer.Typer(add_completion=False)


def _store(settings: Settings):
    if settings.store_backend == "memory":
        return MemorySkillStore(settings)
    return SQLiteSkillStore(settings)


def _setup() -> Settings:
    load_dotenv()
    st = Settings()
    configure_logging(st.log_level, st.json_logs)
    return st


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    print(f"[green]OK[/green] wrote {path}")


def _fail(e: SkillGraphMinerError) -> None:
    print(f"[red]error[/red] {escape(str(e))}")
    raise typer.Exit(code=1)


@app.command()
def graph(events: Path, out: Optional[Path] = None):
    """Build the event graph for a JSON array of OrgEvents and print its stats."""
    st = _setup()
    try:
        g = EventGraphBuilder.from_settings(st).build(events_from_dicts(_read_json(events)))
    except SkillGraphMinerError as e:
        _fail(e)

    t = Table(title="Event graph")
    t.add_column("stat")
    t.add_column("value", justify="right")
    for k, v in g.stats.to_dict().items():
        t.add_row(k, str(v))
    print(t)

    if out is not None:
        _write_json(out, g.to_dict())


@app.command()
def mine(
    events: Path,
    out: Optional[Path] = None,
    window_ms: Optional[int] = None,
    min_frequency: Optional[int] = None,
    min_confidence: Optional[float] = None,
):
    """Build the event graph and mine recurring behavioral patterns from it."""
    st = _setup()
    overrides = {
        k: v
        for k, v in {
            "sequence_window_ms": window_ms,
            "min_frequency": min_frequency,
            "min_confidence": min_confidence,
        }.items()
        if v is not None
    }
    try:
        config = MiningConfig.create(**{**MiningConfig.from_settings(st).model_dump(), **overrides})
        g = EventGraphBuilder.from_settings(st).build(events_from_dicts(_read_json(events)))
        patterns = mine_patterns(g, config)
    except SkillGraphMinerError as e:
        _fail(e)

    if not patterns:
        print("[yellow]No patterns found.[/yellow]")
    else:
        t = Table(title=f"{len(patterns)} mined patterns")
        t.add_column("name")
        t.add_column("freq", justify="right")
        t.add_column("confidence", justify="right")
        t.add_column("cross-system")
        for p in patterns:
            t.add_row(p.name, str(p.frequency), f"{p.confidence:.2f}", "yes" if p.cross_system else "no")
        print(t)

    if out is not None:
        _write_json(out, [p.to_dict() for p in patterns])


@app.command()
def compile(patterns: Path, out: Optional[Path] = None, min_confidence: float = 0.3):
    """Compile mined patterns (JSON from `sgm mine --out`) into skill graphs."""
    _setup()
    try:
        mined = patterns_from_dicts(_read_json(patterns))
        skills = compile_all_patterns(mined, min_confidence)
    except SkillGraphMinerError as e:
        _fail(e)

    for s in skills:
        print(f"[bold]{s.id}[/bold] {s.name}")
        print(f"  {s.description}")
        print(f"  nodes={len(s.nodes)} edges={len(s.edges)} integrations={', '.join(s.metadata.integrations)}")

    print(f"\n[green]{len(skills)}[/green] of {len(mined)} patterns compiled")
    if out is not None:
        _write_json(out, [s.to_dict() for s in skills])


@app.command()
def normalize(
    source: str,
    records: Path,
    org_id: str = "default",
    action_hint: Optional[str] = None,
    out: Optional[Path] = None,
):
    """Normalize raw records from one source (github, slack, linear or any other) into OrgEvents."""
    _setup()
    events = normalize_records(source, _read_json(records), org_id, action_hint=action_hint)
    print(f"[green]{len(events)}[/green] events from {source}")
    for ev in events[:10]:
        print(f"- {ev.timestamp} {ev.source}:{ev.event_type} {ev.entity_type}/{ev.entity_id} by {ev.actor_id}")
    if out is not None:
        _write_json(out, [ev.to_dict() for ev in events])


@app.command()
def discover(
    workspace_id: str,
    events: Optional[Path] = typer.Option(None, help="JSON array of canonical OrgEvents"),
    records: Optional[List[str]] = typer.Option(None, help="SOURCE=FILE with raw records; repeatable"),
    org_id: str = "default",
    min_confidence: Optional[float] = None,
):
    """Run auto-discovery for a workspace: ingest -> mine -> compile -> save versions."""
    st = _setup()
    store = _store(st)
    store.ensure_schema()

    by_source: dict[str, list] = {}
    for spec in records or []:
        source, sep, file = spec.partition("=")
        if not sep or not source or not file:
            raise typer.BadParameter(f"expected SOURCE=FILE, got {spec!r}", param_hint="--records")
        by_source.setdefault(source, []).extend(_read_json(Path(file)))

    def show(p: DiscoveryProgress) -> None:
        color = {"running": "cyan", "done": "green", "error": "red"}[p.status]
        print(f"[{color}]{p.stage:<12}[/{color}] {escape(p.message)}")

    try:
        ws = run_auto_discovery(
            workspace_id,
            store,
            settings=st,
            records_by_source=by_source or None,
            events=events_from_dicts(_read_json(events)) if events is not None else None,
            org_id=org_id,
            min_confidence=min_confidence,
            on_progress=show,
        )
    except SkillGraphMinerError as e:
        _fail(e)

    print(
        f"\n[bold]{workspace_id}[/bold]: {ws.total_events} events, "
        f"{len(ws.mined_patterns)} patterns, {len(ws.compiled_skills)} skills "
        f"(backend={st.store_backend})"
    )


@app.command()
def versions(workspace_id: str, skill_id: Optional[str] = None, limit: int = 50):
    """List stored skill versions for a workspace, newest first."""
    st = _setup()
    store = _store(st)
    try:
        items = store.list_versions(workspace_id, skill_id, limit=limit)
    except SkillGraphMinerError as e:
        _fail(e)

    if not items:
        print("[yellow]No versions stored.[/yellow]")
        return

    t = Table(title=f"Skill versions for {workspace_id}")
    t.add_column("skill")
    t.add_column("version", justify="right")
    t.add_column("status")
    t.add_column("name")
    for v in items:
        t.add_row(v.skill_id, str(v.version), v.status, v.skill.name)
    print(t)


@app.command()
def serve(host: str = "127.0.0.1", port: int = 8099):
    """Run the HTTP API. Requires: pip install -e .[server]"""
    load_dotenv()
    import uvicorn
    uvicorn.run("sgm.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    app()
