"""Dashboard statistics computed over the full, unfiltered candidate collection."""

import math
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import STATUSES
from .reconciler import CandidateRecord


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def pipeline_stats(candidates: Iterable[CandidateRecord]) -> dict[str, int]:
    """Count candidates per status. Every status is present, zero or not."""
    counts = dict.fromkeys(STATUSES, 0)
    for candidate in candidates:
        counts[candidate.status] += 1
    return counts


def candidates_added_since(
    candidates: Iterable[CandidateRecord],
    days: int = 7,
    now: Optional[datetime] = None,
) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    return sum(1 for c in candidates if c.created_at is not None and c.created_at >= cutoff)


def average_time_to_hire(candidates: Iterable[CandidateRecord]) -> int:
    """Average whole days from creation to the last update, over hired candidates."""
    durations = [
        (c.updated_at - c.created_at).days
        for c in candidates
        if c.status == "hired" and c.created_at is not None and c.updated_at is not None
    ]
    if not durations:
        return 0
    return round_half_up(sum(durations) / len(durations))


def offer_acceptance_rate(candidates: Iterable[CandidateRecord]) -> int:
    """Hired as a percentage of everyone who reached hired, offer or rejected."""
    counts = pipeline_stats(candidates)
    decided = counts["hired"] + counts["offer"] + counts["rejected"]
    if decided == 0:
        return 0
    return round_half_up(counts["hired"] / decided * 100)


def _step_rate(counts: dict[str, int], source: str, target: str) -> int:
    if counts[source] == 0:
        return 0
    return round_half_up(counts[target] / (counts[source] + counts[target]) * 100)


def conversion_rates(candidates: Iterable[CandidateRecord]) -> dict[str, int]:
    counts = pipeline_stats(candidates)
    return {
        "new_to_screening": _step_rate(counts, "new", "screening"),
        "screening_to_interview": _step_rate(counts, "screening", "interview"),
        "interview_to_offer": _step_rate(counts, "interview", "offer"),
        "offer_to_hired": _step_rate(counts, "offer", "hired"),
    }


def dashboard(candidates: Iterable[CandidateRecord], now: Optional[datetime] = None) -> dict:
    candidates = list(candidates)
    pipeline = pipeline_stats(candidates)
    return {
        "total": len(candidates),
        "unviewed": sum(1 for c in candidates if not c.viewed),
        "pipeline": pipeline,
        "added_this_week": candidates_added_since(candidates, now=now),
        "average_time_to_hire": average_time_to_hire(candidates),
        "offer_acceptance_rate": offer_acceptance_rate(candidates),
        "conversion_rates": conversion_rates(candidates),
    }
