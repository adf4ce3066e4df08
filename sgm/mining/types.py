from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import ConfigurationError, UpstreamDataError
from ..settings import Settings


class MiningConfig(BaseModel):
    """Thresholds for structural sequence mining."""

    model_config = ConfigDict(frozen=True, extra="forbid", alias_generator=to_camel, populate_by_name=True)

    # time window for sequence extraction (ms)
    sequence_window_ms: int = Field(default=4 * 60 * 60 * 1000, gt=0)
    min_frequency: int = Field(default=3, ge=0)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    # max token edit distance between sequences of one cluster
    max_edit_distance: int = Field(default=2, ge=0)
    max_sequence_length: int = Field(default=10, ge=1)

    @classmethod
    def create(cls, **values: Any) -> "MiningConfig":
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(f"invalid mining config: {e}") from e

    @classmethod
    def from_settings(cls, settings: Settings) -> "MiningConfig":
        return cls.create(
            sequence_window_ms=settings.sequence_window_ms,
            min_frequency=settings.min_frequency,
            min_confidence=settings.min_confidence,
            max_edit_distance=settings.max_edit_distance,
            max_sequence_length=settings.max_sequence_length,
        )

    @classmethod
    def coerce(cls, value: "MiningConfig | dict[str, Any] | None") -> "MiningConfig":
        """Validate whatever the caller handed in; None means defaults."""
        if value is None:
            return cls()
        if isinstance(value, MiningConfig):
            # instances built with model_construct skip validation
            return cls.create(**value.model_dump())
        if isinstance(value, dict):
            return cls.create(**value)
        raise ConfigurationError(f"mining config must be a MiningConfig or dict, got {type(value).__name__}")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class SequenceStep:
    event_type: str
    source: str
    relative_time_ms: int  # ms since the anchor event

    @property
    def token(self) -> str:
        return f"{self.source}:{self.event_type}"

    def to_dict(self) -> dict[str, Any]:
        return {"eventType": self.event_type, "source": self.source, "relativeTimeMs": self.relative_time_ms}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SequenceStep":
        return cls(event_type=d["eventType"], source=d["source"], relative_time_ms=int(d["relativeTimeMs"]))


@dataclass(frozen=True)
class EventSequence:
    """A raw forward walk from one anchor occurrence."""

    events: tuple[SequenceStep, ...]
    actor_id: str
    start_time: str
    end_time: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [s.to_dict() for s in self.events],
            "actorId": self.actor_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "EventSequence":
        return cls(
            events=tuple(SequenceStep.from_dict(s) for s in d["events"]),
            actor_id=d["actorId"],
            start_time=d["startTime"],
            end_time=d["endTime"],
        )


@dataclass(frozen=True)
class PatternStep:
    event_type: str
    source: str
    avg_delay_ms: int   # average time after the anchor
    std_dev_ms: int
    optional: bool      # present in < 80% of instances

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type,
            "source": self.source,
            "avgDelayMs": self.avg_delay_ms,
            "stdDevMs": self.std_dev_ms,
            "optional": self.optional,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PatternStep":
        return cls(
            event_type=d["eventType"],
            source=d["source"],
            avg_delay_ms=int(d["avgDelayMs"]),
            std_dev_ms=int(d["stdDevMs"]),
            optional=bool(d["optional"]),
        )


@dataclass(frozen=True)
class MinedPattern:
    """A cluster of similar sequences, summarized."""

    id: str
    name: str
    anchor_event: str
    anchor_source: str
    sequence: tuple[PatternStep, ...]
    frequency: int
    actors: tuple[str, ...]
    confidence: float   # frequency / occurrences of the anchor type, 0-1
    entropy: float      # mean normalized std-dev of step delays, low = regular
    cross_system: bool
    instances: tuple[EventSequence, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "anchorEvent": self.anchor_event,
            "anchorSource": self.anchor_source,
            "sequence": [s.to_dict() for s in self.sequence],
            "frequency": self.frequency,
            "actors": list(self.actors),
            "confidence": self.confidence,
            "entropy": self.entropy,
            "crossSystem": self.cross_system,
            "instances": [i.to_dict() for i in self.instances],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MinedPattern":
        return cls(
            id=d["id"],
            name=d["name"],
            anchor_event=d["anchorEvent"],
            anchor_source=d["anchorSource"],
            sequence=tuple(PatternStep.from_dict(s) for s in d["sequence"]),
            frequency=int(d["frequency"]),
            actors=tuple(d.get("actors", [])),
            confidence=float(d["confidence"]),
            entropy=float(d["entropy"]),
            cross_system=bool(d["crossSystem"]),
            instances=tuple(EventSequence.from_dict(i) for i in d.get("instances", [])),
        )


def patterns_from_dicts(items: Any) -> list[MinedPattern]:
    """Parse MinedPattern JSON (as written by `to_dict`); any malformed entry raises UpstreamDataError."""
    if not isinstance(items, list):
        raise UpstreamDataError("patterns must be a JSON array of MinedPatterns")
    patterns = []
    for i, d in enumerate(items):
        try:
            patterns.append(MinedPattern.from_dict(d))
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamDataError(f"malformed pattern at index {i}: {e!r}") from e
    return patterns
