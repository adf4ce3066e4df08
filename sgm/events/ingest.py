from __future__ import annotations

from typing import Iterable

from .types import OrgEvent

MAX_EVENTS_PER_WORKSPACE = 10_000


def merge_events(
    existing: list[OrgEvent],
    incoming: Iterable[OrgEvent],
    *,
    cap: int = MAX_EVENTS_PER_WORKSPACE,
) -> tuple[list[OrgEvent], int]:
    """Append incoming events not already present (by id), then keep the newest ``cap``.

    Returns (merged events, number of new events accepted). Existing order is kept;
    the cap drops from the head, so the oldest ingested events go first.
    """
    seen = {e.id for e in existing}
    added: list[OrgEvent] = []
    for ev in incoming:
        if ev.id in seen:
            continue
        seen.add(ev.id)
        added.append(ev)

    merged = list(existing) + added
    if cap > 0 and len(merged) > cap:
        merged = merged[len(merged) - cap:]
    return merged, len(added)
