from __future__ import annotations

import re
from typing import Sequence

from .types import PatternStep

_WORD_START = re.compile(r"\b\w")


def format_event_type(event_type: str) -> str:
    """``pr.opened`` -> ``Pr Opened``; ``review_requested`` -> ``Review Requested``."""
    text = event_type.replace(".", " ").replace("_", " ")
    return _WORD_START.sub(lambda m: m.group(0).upper(), text)


def format_duration(ms: int) -> str:
    if ms < 60_000:
        return f"{round(ms / 1000)}s"
    if ms < 3_600_000:
        return f"{round(ms / 60_000)}m"
    return f"{ms / 3_600_000:.1f}h"


def generate_pattern_name(anchor: str, steps: Sequence[PatternStep], shown: int = 3) -> str:
    parts = [format_event_type(anchor)]
    parts.extend(format_event_type(s.event_type) for s in steps[:shown])
    if len(steps) > shown:
        parts.append(f"+{len(steps) - shown} more")
    return " → ".join(parts)
