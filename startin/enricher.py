"""Build viewer-specific startup records from base rows, ratings and engagements."""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Any

from startin.access import can_view_sensitive_data, can_view_rating, resolve_access_role
from startin.models import Startup
from startin.ratings import aggregate_ratings
from startin.schemas import EnrichedStartup, RatingOut
from startin.utils import parse_tags

log = logging.getLogger(__name__)

OWNER_NAME = "You"
UNKNOWN_CREATOR = "Unknown"


def creator_name(startup: Startup, viewer_id: str | None, creator: Any | None = None) -> str:
    if viewer_id and startup.user_id == viewer_id:
        return OWNER_NAME
    name = getattr(creator, "name", None) if creator is not None else None
    return name or UNKNOWN_CREATOR


def _engagement_flags(startup_id: str, viewer_id: str | None, engagements: Iterable[Any]) -> dict[str, bool]:
    flags = {"saved": False, "interested": False}
    if not viewer_id:
        return flags
    for e in engagements:
        if e.startup_id != startup_id or e.user_id != viewer_id:
            continue
        if e.type == "saved":
            flags["saved"] = True
        elif e.type == "interest":
            flags["interested"] = True
    return flags


def _rating_out(r: Any) -> RatingOut:
    return RatingOut(
        id=r.id, dimension=r.dimension, score=r.score, comment=r.comment,
        user_id=r.user_id, visibility=r.visibility or "public", created_at=r.created_at,
    )


def enrich_startup(
    startup: Startup,
    ratings: Iterable[Any],
    viewer_id: str | None,
    *,
    creator: Any | None = None,
    grants: Iterable[Any] = (),
    engagements: Iterable[Any] = (),
) -> EnrichedStartup:
    """Combine a startup with the ratings and flags this viewer is entitled to.

    Viewers who fail the sensitive-data gate get ``avg_rating=None`` and no
    ratings at all; the public fields are always filled in.
    """
    grants = list(grants)
    role = resolve_access_role(startup, viewer_id, grants)
    base: dict[str, Any] = {
        "id": startup.id, "user_id": startup.user_id, "name": startup.name,
        "summary": startup.summary, "description": startup.description,
        "tags": parse_tags(startup.tags_json), "logo_url": startup.logo_url,
        "visibility": startup.visibility or "public", "status": startup.status,
        "asks_and_opportunities": startup.asks_and_opportunities,
        "website_url": startup.website_url, "created_at": startup.created_at,
        "creator_name": creator_name(startup, viewer_id, creator),
        "access_role": role.value if role else None,
        **_engagement_flags(startup.id, viewer_id, engagements),
    }

    if not can_view_sensitive_data(startup, viewer_id, grants):
        log.debug("Viewer %s cannot see ratings for startup %s", viewer_id, startup.id)
        return EnrichedStartup(**base)

    visible = [r for r in ratings if can_view_rating(r, startup, viewer_id, grants)]
    aggregate = aggregate_ratings(visible)
    return EnrichedStartup(
        **base,
        avg_rating=aggregate.overall,
        dimension_ratings=aggregate.dimensions_dict(),
        user_ratings=[_rating_out(r) for r in visible],
    )


def group_by_startup(rows: Iterable[Any]) -> dict[str, list[Any]]:
    grouped: dict[str, list[Any]] = defaultdict(list)
    for row in rows:
        grouped[row.startup_id].append(row)
    return grouped


def enrich_many(
    startups: Iterable[Startup],
    viewer_id: str | None,
    *,
    ratings: Iterable[Any] = (),
    grants: Iterable[Any] = (),
    engagements: Iterable[Any] = (),
    profiles: Mapping[str, Any] | None = None,
) -> list[EnrichedStartup]:
    """Enrich a batch of startups from flat, pre-loaded rows."""
    ratings_by = group_by_startup(ratings)
    grants_by = group_by_startup(grants)
    engagements_by = group_by_startup(engagements)
    profiles = profiles or {}
    return [
        enrich_startup(
            s, ratings_by.get(s.id, []), viewer_id,
            creator=profiles.get(s.user_id),
            grants=grants_by.get(s.id, []),
            engagements=engagements_by.get(s.id, []),
        )
        for s in startups
    ]
