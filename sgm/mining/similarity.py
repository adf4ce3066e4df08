from __future__ import annotations

from typing import Sequence

from .types import EventSequence

TOKEN_SEPARATOR = "→"

# Length gaps above this are returned as the distance without running the DP.
LENGTH_GAP_SHORTCUT = 3


def canonical_form(seq: EventSequence) -> str:
    """``source:eventType`` tokens joined in order, e.g. ``github:pr.opened→slack:message.sent``."""
    return TOKEN_SEPARATOR.join(step.token for step in seq.events)


def sequence_edit_distance(a: str, b: str) -> int:
    """Levenshtein distance over canonical tokens (steps), not characters."""
    if a == b:
        return 0
    ta = a.split(TOKEN_SEPARATOR)
    tb = b.split(TOKEN_SEPARATOR)
    m, n = len(ta), len(tb)
    if abs(m - n) > LENGTH_GAP_SHORTCUT:
        return abs(m - n)

    prev = list(range(n + 1))
    for i in range(1, m + 1):
        cur = [i] + [0] * n
        for j in range(1, n + 1):
            cost = 0 if ta[i - 1] == tb[j - 1] else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
        prev = cur
    return prev[n]


def cluster_sequences(canonicals: Sequence[str], max_edit_distance: int) -> list[list[int]]:
    """Greedy leader clustering; returns lists of indices into ``canonicals``.

    Each unassigned sequence, in input order, opens a cluster and absorbs every
    later unassigned sequence within ``max_edit_distance`` of it.
    """
    assigned: set[int] = set()
    clusters: list[list[int]] = []
    for i, leader in enumerate(canonicals):
        if i in assigned:
            continue
        cluster = [i]
        assigned.add(i)
        for j in range(i + 1, len(canonicals)):
            if j in assigned:
                continue
            if sequence_edit_distance(leader, canonicals[j]) <= max_edit_distance:
                cluster.append(j)
                assigned.add(j)
        clusters.append(cluster)
    return clusters
