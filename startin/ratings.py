"""Rating dimensions and aggregation.

Ratings arrive one dimension at a time from many raters, so aggregation must
cope with partial dimension sets. Access filtering happens upstream
(see ``startin.access``); everything passed in here is counted.
"""
from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------

RATING_DIMENSIONS: dict[str, str] = {
    "market-demand": "Market & Demand",
    "solution-execution": "Solution & Execution",
    "team-founders": "Team & Founders",
    "business-model": "Business-Model Viability",
    "validation-traction": "Validation & Traction",
    "environment-runway": "Environment & Runway",
}

DIMENSION_DESCRIPTIONS: dict[str, str] = {
    "market-demand": "Is there a real, sizeable market that wants this?",
    "solution-execution": "Does the product solve the problem, and can the team ship it?",
    "team-founders": "Does the founding team have the skills and commitment to win?",
    "business-model": "Can this make money sustainably?",
    "validation-traction": "What evidence is there that customers want it?",
    "environment-runway": "Funding, timing, regulation and competitive environment.",
}

MIN_SCORE = 1
MAX_SCORE = 5

RATING_VISIBILITIES = ("public", "private", "inner-circle")


def validate_score(score: Any) -> int:
    """Return *score* as an int in [1, 5]. Raises ValueError otherwise."""
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValueError(f"Score must be an integer, got {score!r}")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValueError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}, got {score}")
    return score


def validate_dimension(dimension: str) -> str:
    if dimension not in RATING_DIMENSIONS:
        raise ValueError(f"Unknown rating dimension {dimension!r}")
    return dimension


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> float:
    """Round to one decimal place, halves going up (4.25 -> 4.3)."""
    return math.floor(value * 10 + 0.5) / 10


@dataclass(frozen=True)
class DimensionAggregate:
    avg: float
    count: int

    def as_dict(self) -> dict[str, Any]:
        return {"avg": self.avg, "count": self.count}


@dataclass(frozen=True)
class RatingAggregate:
    overall: float = 0
    dimensions: dict[str, DimensionAggregate] = field(default_factory=dict)
    count: int = 0

    def dimensions_dict(self) -> dict[str, dict[str, Any]]:
        return {k: v.as_dict() for k, v in self.dimensions.items()}


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def aggregate_ratings(ratings: Iterable[Any]) -> RatingAggregate:
    """Compute the overall and per-dimension averages for one startup.

    *ratings* may be ORM rows, schema objects or plain dicts; each needs a
    ``score`` and a ``dimension``. Records without a score are ignored.
    An empty input yields ``overall == 0`` and no dimensions.
    """
    by_dimension: dict[str, list[int]] = defaultdict(list)
    scores: list[int] = []
    for record in ratings:
        score = _field(record, "score")
        if score is None:
            continue
        scores.append(score)
        dimension = _field(record, "dimension")
        if dimension:
            by_dimension[dimension].append(score)

    if not scores:
        return RatingAggregate()

    dimensions = {
        dim: DimensionAggregate(avg=round_half_up(sum(vals) / len(vals)), count=len(vals))
        for dim, vals in by_dimension.items()
    }
    return RatingAggregate(
        overall=round_half_up(sum(scores) / len(scores)),
        dimensions=dimensions,
        count=len(scores),
    )
