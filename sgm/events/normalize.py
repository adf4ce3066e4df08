"""Raw integration records -> OrgEvents.

A registry of small pure mapping functions keyed by source id. Each
normalizer detects the record kind from its shape and maps it onto the
canonical event contract; unknown sources fall back to a heuristic field
lookup. Records without a usable timestamp are skipped: an event with an
invented time would distort every delay the miner measures.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable

import structlog

from .types import OrgEvent, format_timestamp_ms, parse_timestamp_ms

logger = structlog.get_logger(__name__)

Normalizer = Callable[[list[Any], str, "str | None"], list[OrgEvent]]

TIMESTAMP_FIELDS = [
    "updatedAt", "updated_at", "modifiedAt", "modified_at",
    "createdAt", "created_at", "date", "timestamp", "ts",
    "closedAt", "closed_at", "mergedAt", "merged_at",
    "startDate", "start_date", "dateCreated", "date_created",
]
ACTOR_ID_FIELDS = [
    "user", "userId", "user_id", "creator", "creatorId", "creator_id",
    "author", "authorId", "author_id", "assignee", "assigneeId",
    "ownerId", "owner_id", "owner", "sender", "from",
]
ACTOR_NAME_FIELDS = [
    "userName", "user_name", "authorName", "author_name",
    "displayName", "display_name", "real_name", "realName", "fullName", "full_name",
]
ENTITY_ID_FIELDS = ["id", "identifier", "number", "key", "slug", "record_id", "recordId"]
ENTITY_NAME_FIELDS = ["title", "name", "subject", "summary", "label"]

# source -> action hint -> entity type
ENTITY_TYPE_HINTS: dict[str, dict[str, str]] = {
    "hubspot": {"default": "contact", "LIST_DEALS": "deal", "LIST_COMPANIES": "company", "LIST_TICKETS": "ticket"},
    "notion": {"default": "page", "QUERY_DATABASE": "record", "FETCH_DATABASE": "database"},
    "trello": {"default": "card", "BOARDS": "board", "LISTS": "list"},
    "gitlab": {"default": "project", "MERGE_REQUESTS": "merge_request", "COMMITS": "commit", "PIPELINES": "pipeline"},
    "asana": {"default": "task", "PROJECTS": "project", "WORKSPACES": "workspace"},
    "stripe": {"default": "payment", "CHARGES": "charge", "CUSTOMERS": "customer", "INVOICES": "invoice"},
    "zoom": {"default": "meeting", "RECORDINGS": "recording"},
}

_REPO_RE = re.compile(r"github\.com/([^/]+/[^/]+)")


def _dig(record: Any, path: str) -> Any:
    cur = record
    for part in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(part)
    return cur


def _first(record: dict, *paths: str) -> Any:
    for p in paths:
        v = _dig(record, p)
        if v not in (None, ""):
            return v
    return None


def _iso(value: Any) -> str | None:
    """Epoch seconds/ms or an ISO-8601 string -> canonical ISO-8601, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        ms = int(value) if value > 1e12 else int(float(value) * 1000)
        try:
            return format_timestamp_ms(ms)
        except (OverflowError, ValueError):
            # past datetime.max / before datetime.min
            return None
    if isinstance(value, str):
        # numeric strings first: Slack ts values like "1772442000.0001" are epoch seconds
        try:
            return _iso(float(value))
        except ValueError:
            pass
        try:
            return format_timestamp_ms(parse_timestamp_ms(value))
        except ValueError:
            return None
    return None


def _repo_name(raw: dict) -> str:
    name = _first(raw, "base.repo.full_name", "repository.full_name")
    if name:
        return name
    m = _REPO_RE.search(raw.get("html_url") or "")
    return m.group(1) if m else "unknown"


# ---- GitHub ----

def _github_commit(raw: dict, org_id: str) -> OrgEvent | None:
    ts = _iso(_first(raw, "commit.author.date", "commit.committer.date"))
    if ts is None:
        return None
    sha = str(raw.get("sha") or raw.get("id") or "")
    message = _dig(raw, "commit.message") or ""
    return OrgEvent.create(
        org_id=org_id,
        source="github",
        event_type="commit.created",
        actor_id=str(_first(raw, "author.login", "commit.author.email", "commit.author.name") or "unknown"),
        actor_name=_first(raw, "commit.author.name", "author.login"),
        entity_type="commit",
        entity_id=sha,
        entity_name=message[:100],
        timestamp=ts,
        metadata={"repo": _repo_name(raw), "message": message},
    )


def _github_pr(raw: dict, org_id: str) -> OrgEvent | None:
    if raw.get("merged_at"):
        state = "merged"
    elif raw.get("state") == "closed":
        state = "closed"
    else:
        state = "opened"
    ts = _iso(_first(raw, "merged_at", "closed_at", "updated_at", "created_at"))
    if ts is None:
        return None
    return OrgEvent.create(
        org_id=org_id,
        source="github",
        event_type=f"pr.{state}",
        actor_id=str(_first(raw, "user.login") or "unknown"),
        actor_name=_first(raw, "user.login"),
        entity_type="pull_request",
        entity_id=str(raw.get("number") or raw.get("id") or ""),
        entity_name=raw.get("title"),
        timestamp=ts,
        metadata={
            "repo": _repo_name(raw),
            "state": raw.get("state"),
            "reviewers": [r.get("login") for r in raw.get("requested_reviewers") or [] if isinstance(r, dict)],
        },
    )


def _github_issue(raw: dict, org_id: str) -> OrgEvent | None:
    if raw.get("state") == "closed":
        state = "closed"
    elif raw.get("created_at") == raw.get("updated_at"):
        state = "created"
    else:
        state = "updated"
    ts = _iso(_first(raw, "updated_at", "created_at"))
    if ts is None:
        return None
    return OrgEvent.create(
        org_id=org_id,
        source="github",
        event_type=f"issue.{state}",
        actor_id=str(_first(raw, "user.login") or "unknown"),
        actor_name=_first(raw, "user.login"),
        entity_type="issue",
        entity_id=str(raw.get("number") or raw.get("id") or ""),
        entity_name=raw.get("title"),
        timestamp=ts,
        metadata={
            "repo": _repo_name(raw),
            "labels": [l.get("name") for l in raw.get("labels") or [] if isinstance(l, dict)],
        },
    )


def normalize_github(records: list[Any], org_id: str, action_hint: str | None = None) -> list[OrgEvent]:
    hint = action_hint or ""
    events: list[OrgEvent] = []
    for raw in records:
        if not isinstance(raw, dict):
            continue
        if raw.get("sha") and raw.get("commit"):
            ev = _github_commit(raw, org_id)
        elif raw.get("pull_request") or (raw.get("number") and "merged_at" in raw):
            ev = _github_pr(raw, org_id)
        elif raw.get("number") and raw.get("title"):
            ev = _github_issue(raw, org_id)
        elif "COMMIT" in hint:
            ev = _github_commit(raw, org_id)
        elif "PULL_REQUEST" in hint:
            ev = _github_pr(raw, org_id)
        else:
            continue
        if ev is not None:
            events.append(ev)
    return events


# ---- Slack ----

def _slack_message(raw: dict, org_id: str) -> OrgEvent | None:
    ts = _iso(raw.get("ts"))
    if ts is None:
        return None
    thread = raw.get("thread_ts")
    return OrgEvent.create(
        org_id=org_id,
        source="slack",
        event_type="message.sent",
        actor_id=str(raw.get("user") or raw.get("bot_id") or "unknown"),
        actor_name=_first(raw, "username", "user_profile.real_name"),
        entity_type="channel",
        entity_id=str(raw.get("channel") or raw.get("channel_id") or "unknown"),
        entity_name=raw.get("channel_name"),
        timestamp=ts,
        metadata={
            "text": (raw.get("text") or "")[:500],
            "thread_ts": thread,
            "has_files": bool(raw.get("files")),
        },
        related_entity_ids=[f"slack:thread:{thread}"] if thread else [],
    )


def _slack_channel(raw: dict, org_id: str) -> OrgEvent | None:
    ts = _iso(_first(raw, "updated", "created"))
    if ts is None:
        return None
    return OrgEvent.create(
        org_id=org_id,
        source="slack",
        event_type="channel.updated",
        actor_id=str(raw.get("creator") or "unknown"),
        entity_type="channel",
        entity_id=str(raw.get("id")),
        entity_name=_first(raw, "name", "name_normalized"),
        timestamp=ts,
        metadata={"topic": _dig(raw, "topic.value"), "is_private": raw.get("is_private")},
    )


def normalize_slack(records: list[Any], org_id: str, action_hint: str | None = None) -> list[OrgEvent]:
    hint = action_hint or ""
    events: list[OrgEvent] = []
    for raw in records:
        if not isinstance(raw, dict):
            continue
        if raw.get("ts") and ("text" in raw or raw.get("type") == "message"):
            ev = _slack_message(raw, org_id)
        elif raw.get("id") and ("is_channel" in raw or "is_group" in raw):
            ev = _slack_channel(raw, org_id)
        elif "MESSAGE" in hint or "HISTORY" in hint:
            ev = _slack_message(raw, org_id)
        else:
            continue
        if ev is not None:
            events.append(ev)
    return events


# ---- Linear ----

def _linear_issue(raw: dict, org_id: str) -> OrgEvent | None:
    state = str(_dig(raw, "state.name") or "").lower()
    if state in ("done", "completed", "canceled"):
        event_type = "issue.completed"
    elif raw.get("createdAt") == raw.get("updatedAt"):
        event_type = "issue.created"
    else:
        event_type = "issue.updated"
    ts = _iso(_first(raw, "updatedAt", "createdAt"))
    if ts is None:
        return None
    related = []
    if _dig(raw, "project.id"):
        related.append(f"linear:project:{_dig(raw, 'project.id')}")
    if _dig(raw, "cycle.id"):
        related.append(f"linear:cycle:{_dig(raw, 'cycle.id')}")
    return OrgEvent.create(
        org_id=org_id,
        source="linear",
        event_type=event_type,
        actor_id=str(_first(raw, "creator.id", "assignee.id") or "unknown"),
        actor_name=_first(raw, "creator.name", "assignee.name"),
        entity_type="issue",
        entity_id=str(raw.get("identifier") or raw.get("id") or ""),
        entity_name=raw.get("title"),
        timestamp=ts,
        metadata={
            "state": _dig(raw, "state.name"),
            "priority": raw.get("priority"),
            "team": _first(raw, "team.name", "team.key"),
        },
        related_entity_ids=related,
    )


def _linear_cycle(raw: dict, org_id: str) -> OrgEvent | None:
    event_type = "cycle.completed" if raw.get("completedAt") else "cycle.started"
    ts = _iso(_first(raw, "completedAt", "updatedAt", "startsAt"))
    if ts is None:
        return None
    entity_id = str(raw.get("id") or raw.get("number") or "")
    return OrgEvent.create(
        org_id=org_id,
        source="linear",
        event_type=event_type,
        actor_id="system",
        entity_type="cycle",
        entity_id=entity_id,
        entity_name=raw.get("name") or f"Cycle {raw.get('number')}",
        timestamp=ts,
        metadata={"startsAt": raw.get("startsAt"), "endsAt": raw.get("endsAt"), "progress": raw.get("progress")},
    )


def _linear_project(raw: dict, org_id: str) -> OrgEvent | None:
    ts = _iso(_first(raw, "updatedAt", "createdAt"))
    if ts is None:
        return None
    return OrgEvent.create(
        org_id=org_id,
        source="linear",
        event_type="project.updated",
        actor_id=str(_first(raw, "creator.id", "lead.id") or "system"),
        actor_name=_first(raw, "creator.name", "lead.name"),
        entity_type="project",
        entity_id=str(raw.get("id") or raw.get("slugId") or ""),
        entity_name=raw.get("name"),
        timestamp=ts,
        metadata={"state": raw.get("state"), "targetDate": raw.get("targetDate")},
    )


def normalize_linear(records: list[Any], org_id: str, action_hint: str | None = None) -> list[OrgEvent]:
    hint = action_hint or ""
    events: list[OrgEvent] = []
    for raw in records:
        if not isinstance(raw, dict):
            continue
        if raw.get("identifier") or (raw.get("title") and raw.get("state")):
            ev = _linear_issue(raw, org_id)
        elif raw.get("startsAt") and raw.get("endsAt"):
            ev = _linear_cycle(raw, org_id)
        elif raw.get("name") and raw.get("slugId"):
            ev = _linear_project(raw, org_id)
        elif "ISSUE" in hint:
            ev = _linear_issue(raw, org_id)
        else:
            continue
        if ev is not None:
            events.append(ev)
    return events


# ---- Generic fallback ----

def _find_field(record: dict, candidates: list[str]) -> Any:
    for key in candidates:
        v = record.get(key)
        if isinstance(v, dict):
            if v.get("id") is not None:
                return v["id"]
            continue
        if v is not None and v != "":
            return v
    props = record.get("properties")
    if isinstance(props, dict):
        for key in candidates:
            if props.get(key) is not None:
                return props[key]
    return None


def _summarize_metadata(record: dict, limit: int = 15) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    for key, value in record.items():
        if len(meta) >= limit:
            break
        if isinstance(value, str):
            meta[key] = value[:200]
        elif isinstance(value, (int, float, bool)):
            meta[key] = value
    return meta


def _entity_type_for(source: str, action_hint: str | None) -> str:
    hints = ENTITY_TYPE_HINTS.get(source, {})
    if action_hint:
        for fragment, entity_type in hints.items():
            if fragment != "default" and fragment in action_hint:
                return entity_type
    return hints.get("default", "record")


def normalize_generic(
    records: list[Any], org_id: str, source: str, action_hint: str | None = None
) -> list[OrgEvent]:
    entity_type = _entity_type_for(source, action_hint)
    events: list[OrgEvent] = []
    skipped = 0
    for raw in records:
        if not isinstance(raw, dict):
            continue
        ts = _iso(_find_field(raw, TIMESTAMP_FIELDS))
        entity_id = _find_field(raw, ENTITY_ID_FIELDS)
        if ts is None or entity_id is None:
            skipped += 1
            continue
        actor_name = _find_field(raw, ACTOR_NAME_FIELDS)
        entity_name = _find_field(raw, ENTITY_NAME_FIELDS)
        events.append(
            OrgEvent.create(
                org_id=org_id,
                source=source,
                event_type=f"{entity_type}.observed",
                actor_id=str(_find_field(raw, ACTOR_ID_FIELDS) or "unknown"),
                actor_name=str(actor_name) if actor_name is not None else None,
                entity_type=entity_type,
                entity_id=str(entity_id),
                entity_name=str(entity_name) if entity_name is not None else None,
                timestamp=ts,
                metadata=_summarize_metadata(raw),
            )
        )
    if skipped:
        logger.debug("normalize_generic_skipped", source=source, skipped=skipped)
    return events


NORMALIZERS: dict[str, Normalizer] = {
    "github": normalize_github,
    "slack": normalize_slack,
    "linear": normalize_linear,
}


def normalize_records(
    source: str, records: list[Any], org_id: str, action_hint: str | None = None
) -> list[OrgEvent]:
    """Dispatch raw records to the source's normalizer (generic heuristics when none is registered)."""
    fn = NORMALIZERS.get(source)
    if fn is not None:
        events = fn(records, org_id, action_hint)
    else:
        events = normalize_generic(records, org_id, source, action_hint)
    logger.info("records_normalized", source=source, records=len(records), events=len(events))
    return events
