"""Shared business logic for the StartIn API and MCP server.

Query helpers load rows, hand them to the enricher and the filter engine,
and return view-ready records. Mutation helpers flush but never commit;
the caller owns the transaction.
"""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from startin.access import (
    STARTUP_VISIBILITIES,
    can_discover,
    can_edit_startup,
    can_view_sensitive_data,
    parse_role,
    require_owner,
    resolve_access_role,
)
from startin.enricher import enrich_many
from startin.errors import AuthorizationError, ConflictError, NotFoundError
from startin.filtering import FilterQuery, filter_and_sort, paginate
from startin.models import AccessGrant, Engagement, Rating, Startup, UserProfile
from startin.ratings import RATING_DIMENSIONS, RATING_VISIBILITIES, validate_score
from startin.schemas import EnrichedStartup
from startin.utils import dump_tags

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

UPDATABLE_FIELDS = (
    "name", "summary", "description", "logo_url", "visibility", "status",
    "asks_and_opportunities", "website_url",
)

ENGAGEMENT_TYPES = ("saved", "interest")


class Audience(str, Enum):
    EXPLORE = "explore"
    MINE = "mine"
    SAVED = "saved"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def get_startup(session: Session, startup_id: str) -> Startup:
    startup = get_entity(session, Startup, startup_id)
    if startup is None:
        raise NotFoundError("Startup", startup_id)
    return startup


def get_discoverable_startup(session: Session, startup_id: str, viewer_id: str | None) -> Startup:
    """Fetch a startup the viewer may at least list; hidden ones look missing."""
    startup = get_startup(session, startup_id)
    if not can_discover(startup, viewer_id, load_grants(session, [startup.id])):
        raise NotFoundError("Startup", startup_id)
    return startup


def load_ratings(session: Session, startup_ids: Iterable[str]) -> list[Rating]:
    ids = list(startup_ids)
    if not ids:
        return []
    return list(session.execute(select(Rating).where(Rating.startup_id.in_(ids))).scalars().all())


def load_grants(session: Session, startup_ids: Iterable[str]) -> list[AccessGrant]:
    ids = list(startup_ids)
    if not ids:
        return []
    return list(session.execute(select(AccessGrant).where(AccessGrant.startup_id.in_(ids))).scalars().all())


def load_engagements(session: Session, user_id: str | None) -> list[Engagement]:
    if not user_id:
        return []
    return list(session.execute(select(Engagement).where(Engagement.user_id == user_id)).scalars().all())


def load_profiles(session: Session, user_ids: Iterable[str]) -> dict[str, UserProfile]:
    ids = set(user_ids)
    if not ids:
        return {}
    rows = session.execute(select(UserProfile).where(UserProfile.id.in_(ids))).scalars().all()
    return {p.id: p for p in rows}


def discoverable_startups(session: Session, viewer_id: str | None) -> list[Startup]:
    """Public startups plus, for signed-in viewers, owned and granted ones."""
    query = select(Startup)
    if viewer_id:
        granted = select(AccessGrant.startup_id).where(AccessGrant.user_id == viewer_id)
        query = query.where(or_(
            Startup.visibility == "public",
            Startup.user_id == viewer_id,
            Startup.id.in_(granted),
        ))
    else:
        query = query.where(Startup.visibility == "public")
    return list(session.execute(query).scalars().all())


# ---------------------------------------------------------------------------
# Enrichment & listing
# ---------------------------------------------------------------------------


def enrich_for_viewer(session: Session, startups: list[Startup], viewer_id: str | None) -> list[EnrichedStartup]:
    ids = [s.id for s in startups]
    return enrich_many(
        startups, viewer_id,
        ratings=load_ratings(session, ids),
        grants=load_grants(session, ids),
        engagements=load_engagements(session, viewer_id),
        profiles=load_profiles(session, (s.user_id for s in startups)),
    )


def _require_viewer(viewer_id: str | None, action: str) -> str:
    if not viewer_id:
        raise AuthorizationError(f"Sign in to {action}")
    return viewer_id


def audience_startups(session: Session, viewer_id: str | None, audience: Audience) -> list[Startup]:
    if audience == Audience.MINE:
        owner = _require_viewer(viewer_id, "see your startups")
        return list(session.execute(select(Startup).where(Startup.user_id == owner)).scalars().all())
    if audience == Audience.SAVED:
        user = _require_viewer(viewer_id, "see saved startups")
        saved_ids = select(Engagement.startup_id).where(Engagement.user_id == user, Engagement.type == "saved")
        candidates = session.execute(select(Startup).where(Startup.id.in_(saved_ids))).scalars().all()
        # Saved rows outlive revoked grants; keep only what the viewer can still list.
        grants = load_grants(session, [s.id for s in candidates])
        return [s for s in candidates if can_discover(s, user, grants)]
    return discoverable_startups(session, viewer_id)


def query_startups(
    session: Session, viewer_id: str | None, query: FilterQuery | None = None, *,
    audience: Audience = Audience.EXPLORE, page: int = 1, per_page: int = 50,
) -> tuple[list[EnrichedStartup], int]:
    startups = audience_startups(session, viewer_id, audience)
    items = filter_and_sort(enrich_for_viewer(session, startups, viewer_id), query)
    return paginate(items, page, per_page)


def startup_detail(session: Session, startup_id: str, viewer_id: str | None) -> EnrichedStartup:
    startup = get_discoverable_startup(session, startup_id, viewer_id)
    return enrich_for_viewer(session, [startup], viewer_id)[0]


def visible_startup_ratings(session: Session, startup_id: str, viewer_id: str | None) -> list[dict]:
    return [r.model_dump() for r in startup_detail(session, startup_id, viewer_id).user_ratings]


# ---------------------------------------------------------------------------
# Startup mutations
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def _check_visibility(visibility: str) -> str:
    if visibility not in STARTUP_VISIBILITIES:
        raise ValueError(f"Unknown visibility {visibility!r} ({', '.join(STARTUP_VISIBILITIES)})")
    return visibility


def create_startup(session: Session, owner_id: str | None, data: Mapping[str, Any]) -> Startup:
    owner = _require_viewer(owner_id, "create a startup")
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("Startup name is required")
    startup = Startup(user_id=owner, name=name, tags_json=dump_tags(data.get("tags")))
    apply_updates(startup, {**data, "name": name}, UPDATABLE_FIELDS)
    startup.visibility = _check_visibility(data.get("visibility") or "public")
    session.add(startup)
    session.flush()
    log.info("Created startup %s (%s) for %s", startup.id, startup.name, owner)
    return startup


def update_startup(session: Session, startup: Startup, actor_id: str | None, updates: Mapping[str, Any]) -> Startup:
    """Partial update by the owner or an editor. Only the owner may change visibility."""
    grants = load_grants(session, [startup.id])
    if not can_edit_startup(startup, actor_id, grants):
        raise AuthorizationError("Only the owner or an editor can update this startup")
    updates = dict(updates)
    new_visibility = updates.get("visibility")
    if new_visibility is not None and new_visibility != startup.visibility:
        require_owner(startup, actor_id, "change visibility")
        _check_visibility(new_visibility)
    if updates.get("name") is not None and not updates["name"].strip():
        raise ValueError("Startup name must not be empty")
    apply_updates(startup, updates, UPDATABLE_FIELDS)
    if updates.get("tags") is not None:
        startup.tags_json = dump_tags(updates["tags"])
    session.flush()
    return startup


def delete_startup(session: Session, startup: Startup, actor_id: str | None) -> None:
    require_owner(startup, actor_id, "delete this startup")
    session.delete(startup)
    session.flush()
    log.info("Deleted startup %s", startup.id)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


def _score_and_comment(value: Any) -> tuple[int, str | None]:
    if isinstance(value, Mapping):
        score, comment = value.get("score"), value.get("comment")
    elif hasattr(value, "score"):
        score, comment = value.score, getattr(value, "comment", None)
    else:
        score, comment = value, None
    comment = comment.strip() if isinstance(comment, str) else None
    return validate_score(score), comment or None


def replace_ratings(
    session: Session, startup: Startup, rater_id: str | None,
    scores: Mapping[str, Any], visibility: str = "public",
) -> list[Rating]:
    """Replace the rater's full six-dimension rating set for a startup.

    The old rows are deleted and the new ones inserted in the caller's
    transaction, so readers never see a partially replaced set once committed.
    Each value in *scores* is an int or a ``{"score", "comment"}`` mapping.
    """
    rater = _require_viewer(rater_id, "rate startups")
    if visibility not in RATING_VISIBILITIES:
        raise ValueError(f"Unknown rating visibility {visibility!r}")
    missing = set(RATING_DIMENSIONS) - set(scores)
    unknown = set(scores) - set(RATING_DIMENSIONS)
    if missing or unknown:
        raise ValueError(
            "A rating needs exactly one score per dimension"
            + (f"; missing: {', '.join(sorted(missing))}" if missing else "")
            + (f"; unknown: {', '.join(sorted(unknown))}" if unknown else "")
        )
    parsed = {dim: _score_and_comment(scores[dim]) for dim in RATING_DIMENSIONS}

    if not can_view_sensitive_data(startup, rater, load_grants(session, [startup.id])):
        raise AuthorizationError("You do not have access to rate this startup")

    session.execute(delete(Rating).where(Rating.startup_id == startup.id, Rating.user_id == rater))
    new_rows = [
        Rating(startup_id=startup.id, user_id=rater, dimension=dim, score=score,
               comment=comment, visibility=visibility)
        for dim, (score, comment) in parsed.items()
    ]
    session.add_all(new_rows)
    session.flush()
    log.debug("Replaced ratings for startup %s by %s", startup.id, rater)
    return new_rows


# ---------------------------------------------------------------------------
# Engagements
# ---------------------------------------------------------------------------


def toggle_engagement(session: Session, startup: Startup, user_id: str | None, engagement_type: str) -> bool:
    """Insert the marker if absent, delete it if present. Returns the new state."""
    user = _require_viewer(user_id, "save startups")
    if engagement_type not in ENGAGEMENT_TYPES:
        raise ValueError(f"Unknown engagement type {engagement_type!r} (saved, interest)")
    existing = session.execute(select(Engagement).where(
        Engagement.startup_id == startup.id,
        Engagement.user_id == user,
        Engagement.type == engagement_type,
    )).scalars().first()
    if existing is not None:
        session.delete(existing)
        session.flush()
        return False
    session.add(Engagement(startup_id=startup.id, user_id=user, type=engagement_type))
    try:
        session.flush()
    except IntegrityError as exc:
        raise ConflictError(f"{engagement_type} marker on startup {startup.id} changed concurrently; retry") from exc
    return True


def get_user_engagements(session: Session, user_id: str | None) -> dict[str, list[str]]:
    rows = load_engagements(session, user_id)
    return {
        "saved": [e.startup_id for e in rows if e.type == "saved"],
        "interested": [e.startup_id for e in rows if e.type == "interest"],
    }


# ---------------------------------------------------------------------------
# Access grants
# ---------------------------------------------------------------------------


def _grant_row(session: Session, startup_id: str, user_id: str) -> AccessGrant | None:
    return session.get(AccessGrant, (startup_id, user_id))


def grant_access(session: Session, startup: Startup, actor_id: str | None, user_id: str, role: str) -> AccessGrant:
    """Create the grant or change its role (owner only)."""
    require_owner(startup, actor_id, "grant access")
    role = parse_role(role).value
    if not user_id or user_id == startup.user_id:
        raise ValueError("The owner already has full access; grant another user")
    grant = _grant_row(session, startup.id, user_id)
    if grant is None:
        grant = AccessGrant(startup_id=startup.id, user_id=user_id, role=role)
        session.add(grant)
    else:
        grant.role = role
    session.flush()
    log.debug("Granted %s on startup %s to %s", role, startup.id, user_id)
    return grant


def update_access_role(session: Session, startup: Startup, actor_id: str | None, user_id: str, role: str) -> AccessGrant:
    require_owner(startup, actor_id, "change access roles")
    grant = _grant_row(session, startup.id, user_id)
    if grant is None:
        raise NotFoundError("Access grant", user_id)
    grant.role = parse_role(role).value
    session.flush()
    return grant


def revoke_access(session: Session, startup: Startup, actor_id: str | None, user_id: str) -> bool:
    """Remove a grant (owner only). Returns whether a grant existed."""
    require_owner(startup, actor_id, "revoke access")
    grant = _grant_row(session, startup.id, user_id)
    if grant is None:
        return False
    session.delete(grant)
    session.flush()
    log.debug("Revoked access on startup %s for %s", startup.id, user_id)
    return True


def list_access_grants(session: Session, startup: Startup, actor_id: str | None) -> list[AccessGrant]:
    require_owner(startup, actor_id, "view access grants")
    return load_grants(session, [startup.id])


def check_access(session: Session, startup: Startup, user_id: str | None) -> dict[str, Any]:
    role = resolve_access_role(startup, user_id, load_grants(session, [startup.id]))
    return {"has_access": role is not None, "role": role.value if role else None}


def accessible_startup_ids(session: Session, user_id: str | None) -> list[str]:
    """Ids of startups the user owns or holds a grant on."""
    if not user_id:
        return []
    owned = session.execute(select(Startup.id).where(Startup.user_id == user_id)).scalars().all()
    granted = session.execute(select(AccessGrant.startup_id).where(AccessGrant.user_id == user_id)).scalars().all()
    return sorted(set(owned) | set(granted))


# ---------------------------------------------------------------------------
# Profiles & stats
# ---------------------------------------------------------------------------


def upsert_profile(session: Session, user_id: str | None, updates: Mapping[str, Any]) -> UserProfile:
    user = _require_viewer(user_id, "edit your profile")
    profile = session.get(UserProfile, user)
    if profile is None:
        profile = UserProfile(id=user)
        session.add(profile)
    apply_updates(profile, dict(updates), ("name", "profile_pic_url"))
    session.flush()
    return profile


def compute_stats(session: Session, viewer_id: str | None = None) -> dict:
    """Counts over the startups *viewer_id* can discover, and the ratings on them."""
    startups = discoverable_startups(session, viewer_id)
    by_visibility: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    for s in startups:
        by_visibility[s.visibility or "public"] += 1
        by_status[s.status or "None"] += 1
    ids = [s.id for s in startups]
    ratings = session.execute(
        select(func.count()).select_from(Rating).where(Rating.startup_id.in_(ids))
    ).scalar() or 0
    return {
        "total": len(startups), "ratings": ratings,
        "by_visibility": dict(by_visibility), "by_status": dict(by_status),
    }
