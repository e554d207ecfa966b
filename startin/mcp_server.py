from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from startin import services
from startin.db import init_db, session_scope
from startin.errors import ConfigurationError, StartinError
from startin.filtering import FilterQuery
from startin.ratings import RATING_DIMENSIONS
from startin.schemas import PREDEFINED_STATUSES

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def startin_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "StartIn",
    instructions=(
        "StartIn catalogues startups and collects six-dimension peer ratings. "
        "Every tool takes the acting user's id; ratings and comments are only "
        "returned where that user is allowed to see them. Start with get_stats() "
        "for an overview, then list_startups() to browse and get_startup(id) for detail."
    ),
    lifespan=startin_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(exc: Exception) -> dict:
    return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("startin://overview")
def startin_overview() -> str:
    """Overview of StartIn: data model, visibility rules and rating dimensions."""
    return json.dumps({
        "system": "StartIn: startup catalogue with peer ratings",
        "data_model": {
            "startup": "Owned by one user. Visibility public, invite-only or private. Free-form status and tags.",
            "rating": "One score (1-5) per dimension per rater, with optional comment and visibility.",
            "access_grant": "Owner-issued role (viewer, commenter, editor) on a non-public startup.",
            "engagement": "A user's saved or interest marker on a startup.",
        },
        "visibility_rules": [
            "Owners always see everything on their startups.",
            "Signed-in users see ratings on public startups.",
            "Invite-only and private startups show ratings only to grant holders.",
            "Private ratings are visible to their author only; inner-circle ratings to the owner and grant holders.",
        ],
        "dimensions": RATING_DIMENSIONS,
        "statuses": list(PREDEFINED_STATUSES),
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Startups
# ---------------------------------------------------------------------------


@mcp.tool()
def list_startups(
    user_id: str | None = None, audience: str = "explore",
    search: str | None = None, tags: str | None = None, status: str | None = None,
    visibility: str | None = None, min_rating: float | None = None, max_rating: float | None = None,
    sort_by: str = "rating", sort_dir: str = "desc", active_first: bool = True, limit: int = 50,
) -> dict:
    """List startups as *user_id* sees them.

    Args:
        user_id: Acting user. Omit to browse anonymously (public startups, no ratings).
        audience: explore (everything visible), mine (owned), or saved.
        search: Case-insensitive text matched against name, summary and description.
        tags: Comma-separated tags; any match.
        status: Comma-separated statuses, e.g. "Active,Discovery".
        visibility: Comma-separated: public, invite-only, private.
        min_rating: Lower bound on average rating (unrated startups count as 0).
        max_rating: Upper bound on average rating.
        sort_by: name, rating or created_at.
        sort_dir: asc or desc.
        active_first: Put startups with status "Active" first.
        limit: Max results (default 50, max 500).
    """
    with session_scope() as session:
        try:
            try:
                aud = services.Audience(audience)
            except ValueError:
                raise ConfigurationError(f"Unknown audience {audience!r} (explore, mine, saved)") from None
            query = FilterQuery.from_params(
                search=search, tags=tags, status=status, visibility=visibility,
                min_rating=min_rating, max_rating=max_rating,
                sort_by=sort_by, sort_dir=sort_dir, active_first=active_first,
            )
            items, total = services.query_startups(
                session, user_id, query, audience=aud, page=1, per_page=max(1, min(limit, 500)),
            )
        except StartinError as exc:
            return _error(exc)
        return {"items": [i.model_dump(mode="json") for i in items], "total": total}


@mcp.tool()
def get_startup(startup_id: str, user_id: str | None = None) -> dict:
    """Full detail for one startup, including the ratings *user_id* may see."""
    with session_scope() as session:
        try:
            return services.startup_detail(session, startup_id, user_id).model_dump(mode="json")
        except StartinError as exc:
            return _error(exc)


@mcp.tool()
def rate_startup(
    startup_id: str, user_id: str, scores: dict[str, int],
    comments: dict[str, str] | None = None, visibility: str = "public",
) -> dict:
    """Replace *user_id*'s rating of a startup.

    Args:
        scores: One integer score (1-5) for each of market-demand, solution-execution,
                team-founders, business-model, validation-traction, environment-runway.
        comments: Optional comment per dimension.
        visibility: public, private (only you) or inner-circle (owner and grant holders).
    """
    comments = comments or {}
    with session_scope() as session:
        try:
            startup = services.get_discoverable_startup(session, startup_id, user_id)
            services.replace_ratings(
                session, startup, user_id,
                {dim: {"score": score, "comment": comments.get(dim)} for dim, score in scores.items()},
                visibility,
            )
            session.commit()
            detail = services.startup_detail(session, startup_id, user_id)
        except (StartinError, ValueError) as exc:
            return _error(exc)
        return {
            "startup_id": startup_id, "avg_rating": detail.avg_rating,
            "dimension_ratings": {k: v.model_dump() for k, v in detail.dimension_ratings.items()},
        }


@mcp.tool()
def toggle_engagement(startup_id: str, user_id: str, engagement_type: str = "saved") -> dict:
    """Toggle *user_id*'s saved or interest marker on a startup. Returns the new state."""
    with session_scope() as session:
        try:
            startup = services.get_discoverable_startup(session, startup_id, user_id)
            active = services.toggle_engagement(session, startup, user_id, engagement_type)
            session.commit()
        except (StartinError, ValueError) as exc:
            return _error(exc)
        return {"startup_id": startup_id, "type": engagement_type, "active": active}


# ---------------------------------------------------------------------------
# Tools: Access
# ---------------------------------------------------------------------------


@mcp.tool()
def grant_access(startup_id: str, owner_id: str, user_id: str, role: str = "viewer") -> dict:
    """Grant *user_id* a role (viewer, commenter, editor) on a startup owned by *owner_id*."""
    with session_scope() as session:
        try:
            startup = services.get_discoverable_startup(session, startup_id, owner_id)
            grant = services.grant_access(session, startup, owner_id, user_id, role)
            session.commit()
        except (StartinError, ValueError) as exc:
            return _error(exc)
        return {"startup_id": grant.startup_id, "user_id": grant.user_id, "role": grant.role}


@mcp.tool()
def revoke_access(startup_id: str, owner_id: str, user_id: str) -> dict:
    """Revoke *user_id*'s access to a startup owned by *owner_id*."""
    with session_scope() as session:
        try:
            startup = services.get_discoverable_startup(session, startup_id, owner_id)
            removed = services.revoke_access(session, startup, owner_id, user_id)
            session.commit()
        except StartinError as exc:
            return _error(exc)
        return {"ok": True, "removed": removed}


# ---------------------------------------------------------------------------
# Tools: Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats(user_id: str | None = None) -> dict:
    """Counts by visibility and status, plus total ratings, over the startups *user_id* can discover."""
    with session_scope() as session:
        return services.compute_stats(session, user_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the StartIn MCP server over stdio."""
    logging.basicConfig(level=os.environ.get("STARTIN_LOG_LEVEL", "WARNING").upper())
    mcp.run()


if __name__ == "__main__":
    main()
