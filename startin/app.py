from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from startin import services
from startin.db import init_db, session_generator
from startin.errors import StartinError
from startin.filtering import FilterQuery
from startin.ratings import DIMENSION_DESCRIPTIONS, RATING_DIMENSIONS
from startin.schemas import (
    PREDEFINED_STATUSES,
    AccessCheckOut,
    AccessGrantIn,
    AccessGrantOut,
    EngagementsOut,
    EngagementToggleOut,
    EngagementType,
    EnrichedStartup,
    ProfileOut,
    ProfileUpdate,
    RatingOut,
    RatingSubmission,
    StartupCreate,
    StartupListResponse,
    StartupUpdate,
    StatsOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="StartIn",
    version="0.1.0",
    description=(
        "Catalogue startups, collect six-dimension peer ratings, and browse "
        "listings filtered to what each viewer may see. The caller's identity "
        "is passed in the X-User-Id header; omit it to browse anonymously."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Startups", "description": "Explore, dashboard and saved listings; startup CRUD."},
        {"name": "Ratings", "description": "Six-dimension ratings and their visibility."},
        {"name": "Engagement", "description": "Saved and interested markers."},
        {"name": "Access", "description": "Owner-managed access grants for non-public startups."},
        {"name": "Users", "description": "Viewer profile and accessible startups."},
        {"name": "Reference", "description": "Dimensions, statuses and stats."},
    ],
)


@app.exception_handler(StartinError)
async def startin_error_handler(request: Request, exc: StartinError) -> JSONResponse:
    log.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Viewer:
    """Who is asking. ``user_id`` is None for anonymous requests."""

    user_id: str | None = None


def current_viewer(x_user_id: str | None = Header(None)) -> Viewer:
    user_id = (x_user_id or "").strip()
    return Viewer(user_id or None)


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(400, str(exc))


def _grant_out(grant) -> dict:
    return {"startup_id": grant.startup_id, "user_id": grant.user_id, "role": grant.role}


def _listing(
    session: Session, viewer: Viewer, audience: services.Audience, *,
    search, tags, visibility, status, min_rating, max_rating, sort_by, sort_dir, active_first,
    page, per_page,
) -> dict:
    query = FilterQuery.from_params(
        search=search, tags=tags, visibility=visibility, status=status,
        min_rating=min_rating, max_rating=max_rating,
        sort_by=sort_by, sort_dir=sort_dir, active_first=active_first,
    )
    items, total = services.query_startups(
        session, viewer.user_id, query, audience=audience, page=page, per_page=per_page,
    )
    return {"items": items, "total": total, "page": page, "per_page": per_page}


# ---------------------------------------------------------------------------
# Routes: Startup listings (fixed paths before /{startup_id})
# ---------------------------------------------------------------------------


@app.get("/api/startups", response_model=StartupListResponse,
         tags=["Startups"], summary="Explore startups visible to the viewer")
async def explore_startups(
    search: str | None = Query(None, description="Case-insensitive match on name, summary and description"),
    tags: str | None = Query(None, description="Comma-separated tags (any match)"),
    visibility: str | None = Query(None, description="Comma-separated: public, invite-only, private"),
    status: str | None = Query(None, description="Comma-separated statuses, e.g. Active,Discovery"),
    min_rating: float | None = Query(None, ge=0, le=5),
    max_rating: float | None = Query(None, ge=0, le=5),
    sort_by: str = Query("rating", description="name, rating or created_at"),
    sort_dir: str = Query("desc", description="asc or desc"),
    active_first: bool = Query(True, description="List Active startups before all others"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    viewer: Viewer = Depends(current_viewer),
    session: Session = Depends(db_session),
):
    return _listing(
        session, viewer, services.Audience.EXPLORE,
        search=search, tags=tags, visibility=visibility, status=status,
        min_rating=min_rating, max_rating=max_rating, sort_by=sort_by, sort_dir=sort_dir,
        active_first=active_first, page=page, per_page=per_page,
    )


@app.get("/api/startups/mine", response_model=StartupListResponse,
         tags=["Startups"], summary="The viewer's own startups (dashboard)")
async def my_startups(
    search: str | None = Query(None),
    tags: str | None = Query(None),
    visibility: str | None = Query(None),
    status: str | None = Query(None),
    min_rating: float | None = Query(None, ge=0, le=5),
    max_rating: float | None = Query(None, ge=0, le=5),
    sort_by: str = Query("created_at"),
    sort_dir: str = Query("desc"),
    active_first: bool = Query(False),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    viewer: Viewer = Depends(current_viewer),
    session: Session = Depends(db_session),
):
    return _listing(
        session, viewer, services.Audience.MINE,
        search=search, tags=tags, visibility=visibility, status=status,
        min_rating=min_rating, max_rating=max_rating, sort_by=sort_by, sort_dir=sort_dir,
        active_first=active_first, page=page, per_page=per_page,
    )


@app.get("/api/startups/saved", response_model=StartupListResponse,
         tags=["Startups"], summary="Startups the viewer has saved")
async def saved_startups(
    search: str | None = Query(None),
    tags: str | None = Query(None),
    status: str | None = Query(None),
    sort_by: str = Query("created_at"),
    sort_dir: str = Query("desc"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=500),
    viewer: Viewer = Depends(current_viewer),
    session: Session = Depends(db_session),
):
    return _listing(
        session, viewer, services.Audience.SAVED,
        search=search, tags=tags, visibility=None, status=status,
        min_rating=None, max_rating=None, sort_by=sort_by, sort_dir=sort_dir,
        active_first=False, page=page, per_page=per_page,
    )


# ---------------------------------------------------------------------------
# Routes: Startups
# ---------------------------------------------------------------------------


@app.post("/api/startups", response_model=EnrichedStartup, status_code=201,
          tags=["Startups"], summary="Create a startup owned by the viewer")
async def create_startup(body: StartupCreate, viewer: Viewer = Depends(current_viewer),
                         session: Session = Depends(db_session)):
    try:
        startup = services.create_startup(session, viewer.user_id, body.model_dump())
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return services.startup_detail(session, startup.id, viewer.user_id)


@app.get("/api/startups/{startup_id}", response_model=EnrichedStartup,
         tags=["Startups"], summary="Startup detail as the viewer sees it")
async def get_startup(startup_id: str, viewer: Viewer = Depends(current_viewer),
                      session: Session = Depends(db_session)):
    return services.startup_detail(session, startup_id, viewer.user_id)


@app.put("/api/startups/{startup_id}", response_model=EnrichedStartup,
         tags=["Startups"], summary="Update startup fields (owner or editor; null fields ignored)")
async def update_startup(startup_id: str, body: StartupUpdate, viewer: Viewer = Depends(current_viewer),
                         session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    try:
        services.update_startup(session, startup, viewer.user_id, body.model_dump())
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return services.startup_detail(session, startup_id, viewer.user_id)


@app.delete("/api/startups/{startup_id}", tags=["Startups"],
            summary="Delete a startup with its ratings, grants and engagements (owner only)")
async def delete_startup(startup_id: str, viewer: Viewer = Depends(current_viewer),
                         session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    services.delete_startup(session, startup, viewer.user_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Ratings
# ---------------------------------------------------------------------------


@app.get("/api/startups/{startup_id}/ratings", response_model=list[RatingOut],
         tags=["Ratings"], summary="Ratings on a startup that the viewer may see")
async def list_ratings(startup_id: str, viewer: Viewer = Depends(current_viewer),
                       session: Session = Depends(db_session)):
    return services.visible_startup_ratings(session, startup_id, viewer.user_id)


@app.put("/api/startups/{startup_id}/ratings", response_model=EnrichedStartup,
         tags=["Ratings"], summary="Replace the viewer's rating (all six dimensions at once)")
async def submit_ratings(startup_id: str, body: RatingSubmission, viewer: Viewer = Depends(current_viewer),
                         session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    try:
        services.replace_ratings(
            session, startup, viewer.user_id,
            {dim: s.model_dump() for dim, s in body.scores.items()}, body.visibility,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return services.startup_detail(session, startup_id, viewer.user_id)


# ---------------------------------------------------------------------------
# Routes: Engagement
# ---------------------------------------------------------------------------


@app.post("/api/startups/{startup_id}/engagements/{engagement_type}", response_model=EngagementToggleOut,
          tags=["Engagement"], summary="Toggle the saved or interest marker")
async def toggle_engagement(startup_id: str, engagement_type: EngagementType,
                            viewer: Viewer = Depends(current_viewer),
                            session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    active = services.toggle_engagement(session, startup, viewer.user_id, engagement_type)
    session.commit()
    return {"startup_id": startup_id, "type": engagement_type, "active": active}


@app.get("/api/engagements", response_model=EngagementsOut,
         tags=["Engagement"], summary="Ids of startups the viewer saved or marked interest in")
async def my_engagements(viewer: Viewer = Depends(current_viewer), session: Session = Depends(db_session)):
    return services.get_user_engagements(session, viewer.user_id)


# ---------------------------------------------------------------------------
# Routes: Access
# ---------------------------------------------------------------------------


@app.get("/api/startups/{startup_id}/access", response_model=list[AccessGrantOut],
         tags=["Access"], summary="List access grants (owner only)")
async def list_access(startup_id: str, viewer: Viewer = Depends(current_viewer),
                      session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    return [_grant_out(g) for g in services.list_access_grants(session, startup, viewer.user_id)]


@app.get("/api/startups/{startup_id}/access/me", response_model=AccessCheckOut,
         tags=["Access"], summary="The viewer's own access role on a startup")
async def my_access(startup_id: str, viewer: Viewer = Depends(current_viewer),
                    session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    return services.check_access(session, startup, viewer.user_id)


@app.put("/api/startups/{startup_id}/access/{user_id}", response_model=AccessGrantOut,
         tags=["Access"], summary="Grant access or change a user's role (owner only)")
async def put_access(startup_id: str, user_id: str, body: AccessGrantIn,
                     viewer: Viewer = Depends(current_viewer), session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    try:
        grant = services.grant_access(session, startup, viewer.user_id, user_id, body.role)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return _grant_out(grant)


@app.patch("/api/startups/{startup_id}/access/{user_id}", response_model=AccessGrantOut,
           tags=["Access"], summary="Change an existing grant's role (owner only)")
async def patch_access(startup_id: str, user_id: str, body: AccessGrantIn,
                       viewer: Viewer = Depends(current_viewer), session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    try:
        grant = services.update_access_role(session, startup, viewer.user_id, user_id, body.role)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return _grant_out(grant)


@app.delete("/api/startups/{startup_id}/access/{user_id}", tags=["Access"],
            summary="Revoke a user's access (owner only)")
async def delete_access(startup_id: str, user_id: str, viewer: Viewer = Depends(current_viewer),
                        session: Session = Depends(db_session)):
    startup = services.get_discoverable_startup(session, startup_id, viewer.user_id)
    if not services.revoke_access(session, startup, viewer.user_id, user_id):
        raise HTTPException(404, "Access grant not found")
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Users
# ---------------------------------------------------------------------------


@app.put("/api/users/me", response_model=ProfileOut, tags=["Users"],
         summary="Create or update the viewer's profile")
async def update_profile(body: ProfileUpdate, viewer: Viewer = Depends(current_viewer),
                         session: Session = Depends(db_session)):
    profile = services.upsert_profile(session, viewer.user_id, body.model_dump())
    session.commit()
    return {"id": profile.id, "name": profile.name, "profile_pic_url": profile.profile_pic_url}


@app.get("/api/users/me/accessible", tags=["Users"],
         summary="Ids of startups the viewer owns or holds a grant on")
async def accessible_startups(viewer: Viewer = Depends(current_viewer), session: Session = Depends(db_session)):
    return {"startup_ids": services.accessible_startup_ids(session, viewer.user_id)}


# ---------------------------------------------------------------------------
# Routes: Reference
# ---------------------------------------------------------------------------


@app.get("/api/dimensions", tags=["Reference"], summary="The six rating dimensions")
async def list_dimensions():
    return [
        {"key": key, "label": label, "description": DIMENSION_DESCRIPTIONS[key]}
        for key, label in RATING_DIMENSIONS.items()
    ]


@app.get("/api/statuses", tags=["Reference"], summary="Predefined startup statuses")
async def list_statuses():
    return [{"value": k, "definition": v} for k, v in PREDEFINED_STATUSES.items()]


@app.get("/api/stats", response_model=StatsOut, tags=["Reference"],
         summary="Counts of the startups the viewer can discover")
async def get_stats(viewer: Viewer = Depends(current_viewer), session: Session = Depends(db_session)):
    return services.compute_stats(session, viewer.user_id)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=os.environ.get("STARTIN_LOG_LEVEL", "INFO").upper())
    uvicorn.run(
        "startin.app:app",
        host=os.environ.get("STARTIN_HOST", "127.0.0.1"),
        port=int(os.environ.get("STARTIN_PORT", "8001")),
    )


if __name__ == "__main__":
    main()
