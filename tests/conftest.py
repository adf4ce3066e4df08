"""Shared test fixtures for all test groups."""

from datetime import datetime, timedelta, timezone

import pytest

from sgm.events.types import OrgEvent
from sgm.mining.types import EventSequence, MinedPattern, PatternStep, SequenceStep
from sgm.settings import Settings
from sgm.store_memory import MemorySkillStore
from sgm.store_sqlite import SQLiteSkillStore

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _event(source, event_type, actor_id, entity_id, at, entity_type="item", org_id="org_test"):
    return OrgEvent.create(
        org_id=org_id,
        source=source,
        event_type=event_type,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        timestamp=iso(at),
    )


def _pattern(steps, *, anchor_event="pr.opened", anchor_source="github", frequency=4, confidence=1.0,
             actors=("user_0", "user_1"), pattern_id="pattern_test", name="Pr Opened → Test"):
    sources = {anchor_source, *(s.source for s in steps)}
    return MinedPattern(
        id=pattern_id,
        name=name,
        anchor_event=anchor_event,
        anchor_source=anchor_source,
        sequence=tuple(steps),
        frequency=frequency,
        actors=tuple(actors),
        confidence=confidence,
        entropy=0.0,
        cross_system=len(sources) > 1,
        instances=(
            EventSequence(
                events=(SequenceStep(anchor_event, anchor_source, 0),),
                actor_id=actors[0],
                start_time=iso(BASE_TIME),
                end_time=iso(BASE_TIME),
            ),
        ),
    )


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_event():
    """Factory: make_event(source, event_type, actor_id, entity_id, at, entity_type="item")."""
    return _event


@pytest.fixture
def make_pattern():
    """Factory for hand-built MinedPatterns (compiler tests do not need a graph)."""
    return _pattern


@pytest.fixture
def step():
    def _step(event_type, source, avg_delay_ms, optional=False, std_dev_ms=0):
        return PatternStep(event_type, source, avg_delay_ms, std_dev_ms, optional)

    return _step


@pytest.fixture
def cross_system_events():
    """4 actors each: github pr.opened -> slack message.sent (+5m) -> linear issue.created (+2h).

    Actors are a day apart and every event has its own entity, so the only
    edges are each actor's own chain.
    """
    events = []
    for i in range(4):
        t0 = BASE_TIME + timedelta(days=i)
        actor = f"user_{i}"
        events += [
            _event("github", "pr.opened", actor, f"pr_{i}", t0, "pull_request"),
            _event("slack", "message.sent", actor, f"msg_{i}", t0 + timedelta(minutes=5), "message"),
            _event("linear", "issue.created", actor, f"issue_{i}", t0 + timedelta(hours=2), "issue"),
        ]
    return events


@pytest.fixture
def optional_step_events():
    """5 actors: pr.opened -> (message.sent in 3 of 5, thread.replied otherwise) -> issue.created -> review.requested."""
    events = []
    for i in range(5):
        t0 = BASE_TIME + timedelta(days=i)
        actor = f"user_{i}"
        second = "message.sent" if i < 3 else "thread.replied"
        events += [
            _event("github", "pr.opened", actor, f"pr_{i}", t0, "pull_request"),
            _event("slack", second, actor, f"msg_{i}", t0 + timedelta(minutes=5), "message"),
            _event("linear", "issue.created", actor, f"issue_{i}", t0 + timedelta(minutes=30), "issue"),
            _event("github", "review.requested", actor, f"review_{i}", t0 + timedelta(hours=1), "pull_request"),
        ]
    return events


@pytest.fixture
def memory_settings():
    return Settings(store_backend="memory")


@pytest.fixture
def memory_store(memory_settings):
    return MemorySkillStore(memory_settings)


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteSkillStore(Settings(store_backend="sqlite", sqlite_path=str(tmp_path / "skills.sqlite")))
    store.ensure_schema()
    return store
