"""Filtering, sorting and pagination of enriched startup listings."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator

from startin.errors import ConfigurationError
from startin.schemas import EnrichedStartup
from startin.utils import split_csv

ACTIVE_STATUS = "Active"


class SortKey(str, Enum):
    NAME = "name"
    RATING = "rating"
    CREATED_AT = "created_at"


class SortDir(str, Enum):
    ASC = "asc"
    DESC = "desc"


_SORT_ALIASES = {"avg_rating": SortKey.RATING.value}


class FilterQuery(BaseModel):
    """Typed listing query.

    Within a facet (tags, visibility, status) any selected value matches;
    across facets every active predicate must match. The rating range is only
    applied when at least one bound is given.
    """

    search: str = ""
    tags: list[str] = []
    visibility: list[str] = []
    status: list[str] = []
    min_rating: float | None = None
    max_rating: float | None = None
    sort_by: SortKey = SortKey.RATING
    sort_dir: SortDir = SortDir.DESC
    active_first: bool = False

    @model_validator(mode="after")
    def check_rating_bounds(self) -> FilterQuery:
        for bound in (self.min_rating, self.max_rating):
            if bound is not None and not 0 <= bound <= 5:
                raise ValueError("rating bounds must be between 0 and 5")
        if self.rating_filter_active and self.rating_bounds[0] > self.rating_bounds[1]:
            raise ValueError("min_rating must not exceed max_rating")
        return self

    @property
    def rating_filter_active(self) -> bool:
        return self.min_rating is not None or self.max_rating is not None

    @property
    def rating_bounds(self) -> tuple[float, float]:
        low = 1 if self.min_rating is None else self.min_rating
        high = 5 if self.max_rating is None else self.max_rating
        return low, high

    @classmethod
    def from_params(
        cls, *, search: str | None = None, tags: str | Sequence[str] | None = None,
        visibility: str | Sequence[str] | None = None, status: str | Sequence[str] | None = None,
        min_rating: float | None = None, max_rating: float | None = None,
        sort_by: str | None = None, sort_dir: str | None = None, active_first: bool = False,
    ) -> FilterQuery:
        """Build a query from loosely-typed request parameters.

        Facets may be comma-separated strings or sequences. Unknown sort keys
        or directions and bad rating bounds raise ConfigurationError.
        """
        params: dict[str, Any] = {
            "search": search or "",
            "tags": _as_list(tags), "visibility": _as_list(visibility), "status": _as_list(status),
            "min_rating": min_rating, "max_rating": max_rating, "active_first": active_first,
        }
        if sort_by:
            key = sort_by.strip().lower()
            params["sort_by"] = _SORT_ALIASES.get(key, key)
        if sort_dir:
            params["sort_dir"] = sort_dir.strip().lower()
        try:
            return cls(**params)
        except ValidationError as exc:
            raise ConfigurationError(_describe(exc)) from exc


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return split_csv(value)
    return [v.strip() for v in value if v and v.strip()]


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "Invalid listing query: " + "; ".join(parts)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def matches_search(item: EnrichedStartup, term: str) -> bool:
    if not term:
        return True
    q = term.lower()
    return any(q in (text or "").lower() for text in (item.name, item.summary, item.description))


def matches(item: EnrichedStartup, query: FilterQuery) -> bool:
    if not matches_search(item, query.search):
        return False
    if query.tags and not set(item.tags or ()) & set(query.tags):
        return False
    if query.visibility and item.visibility not in query.visibility:
        return False
    if query.status and not (item.status and item.status in query.status):
        return False
    if query.rating_filter_active:
        low, high = query.rating_bounds
        if not low <= (item.avg_rating or 0) <= high:
            return False
    return True


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def _sort_value(item: EnrichedStartup, key: SortKey) -> Any:
    if key == SortKey.NAME:
        return (item.name or "").lower()
    if key == SortKey.RATING:
        return item.avg_rating or 0
    return item.created_at or datetime.min


def sort_startups(
    items: Iterable[EnrichedStartup], sort_by: SortKey = SortKey.RATING,
    sort_dir: SortDir = SortDir.DESC, active_first: bool = False,
) -> list[EnrichedStartup]:
    """Sort by *sort_by*; equal keys keep ``id`` ascending order.

    Relies on ``list.sort`` being stable (also with ``reverse=True``): the id
    pass runs first, the chosen key second, the Active partition last.
    """
    ordered = sorted(items, key=lambda s: s.id)
    ordered.sort(key=lambda s: _sort_value(s, sort_by), reverse=(sort_dir == SortDir.DESC))
    if active_first:
        ordered.sort(key=lambda s: s.status != ACTIVE_STATUS)
    return ordered


def filter_and_sort(startups: Iterable[EnrichedStartup], query: FilterQuery | None = None) -> list[EnrichedStartup]:
    query = query or FilterQuery()
    kept = [s for s in startups if matches(s, query)]
    return sort_startups(kept, query.sort_by, query.sort_dir, query.active_first)


def paginate(items: Sequence[EnrichedStartup], page: int = 1, per_page: int = 50) -> tuple[list[EnrichedStartup], int]:
    """Return one page of *items* and the total count before paging."""
    if page < 1 or per_page < 1:
        raise ConfigurationError("page and per_page must be positive")
    start = (page - 1) * per_page
    return list(items[start:start + per_page]), len(items)
