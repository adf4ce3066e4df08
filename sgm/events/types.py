from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..errors import UpstreamDataError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

REQUIRED_FIELDS = ("orgId", "source", "eventType", "actorId", "entityType", "entityId", "timestamp")

# fromisoformat before 3.11 only takes 3 or 6 fraction digits
_FRACTION_RE = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def make_event_id(source: str, event_type: str, entity_id: str, timestamp: str) -> str:
    """Deterministic event id, so re-ingesting the same record dedups."""
    raw = f"{source}:{event_type}:{entity_id}:{timestamp}"
    return "evt_" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


def parse_timestamp_ms(value: Any) -> int:
    """ISO-8601 string -> epoch milliseconds. Naive timestamps are read as UTC.

    Raises ValueError for anything that is not a parseable ISO-8601 string.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"not an ISO-8601 timestamp: {value!r}")
    s = value.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    s = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", s, count=1)
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def format_timestamp_ms(ms: int) -> str:
    dt = EPOCH + timedelta(milliseconds=ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class OrgEvent:
    """One canonical activity event from a connected system."""

    id: str
    org_id: str
    source: str          # integration id, e.g. "github"
    event_type: str      # "<noun>.<verb>", e.g. "pr.opened"
    actor_id: str
    entity_type: str
    entity_id: str
    timestamp: str       # ISO-8601
    actor_name: str | None = None
    entity_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    related_entity_ids: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        *,
        org_id: str,
        source: str,
        event_type: str,
        actor_id: str,
        entity_type: str,
        entity_id: str,
        timestamp: str,
        actor_name: str | None = None,
        entity_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        related_entity_ids: list[str] | tuple[str, ...] = (),
    ) -> "OrgEvent":
        return cls(
            id=make_event_id(source, event_type, entity_id, timestamp),
            org_id=org_id,
            source=source,
            event_type=event_type,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            timestamp=timestamp,
            actor_name=actor_name,
            entity_name=entity_name,
            metadata=dict(metadata or {}),
            related_entity_ids=tuple(related_entity_ids),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "orgId": self.org_id,
            "source": self.source,
            "eventType": self.event_type,
            "actorId": self.actor_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
            "relatedEntityIds": list(self.related_entity_ids),
        }
        if self.actor_name is not None:
            out["actorName"] = self.actor_name
        if self.entity_name is not None:
            out["entityName"] = self.entity_name
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrgEvent":
        """Build from the camelCase JSON form. Only the event contract is checked, not vendor shapes."""
        if not isinstance(data, dict):
            raise UpstreamDataError(f"event must be an object, got {type(data).__name__}")
        missing = [k for k in REQUIRED_FIELDS if data.get(k) is None]
        if missing:
            raise UpstreamDataError(f"event is missing {', '.join(missing)}", event_id=data.get("id"))

        source = str(data["source"])
        event_type = str(data["eventType"])
        entity_id = str(data["entityId"])
        timestamp = str(data["timestamp"])
        return cls(
            id=str(data.get("id") or make_event_id(source, event_type, entity_id, timestamp)),
            org_id=str(data["orgId"]),
            source=source,
            event_type=event_type,
            actor_id=str(data["actorId"]),
            entity_type=str(data["entityType"]),
            entity_id=entity_id,
            timestamp=timestamp,
            actor_name=data.get("actorName"),
            entity_name=data.get("entityName"),
            metadata=dict(data.get("metadata") or {}),
            related_entity_ids=tuple(data.get("relatedEntityIds") or ()),
        )


def events_from_dicts(items: list[dict[str, Any]]) -> list[OrgEvent]:
    return [OrgEvent.from_dict(it) for it in items]
