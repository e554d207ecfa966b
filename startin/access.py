"""Access decisions for startups and individual ratings.

All functions here are pure: callers load the startup, its grants and its
ratings and pass them in. Loading and persisting grants lives in
``startin.services``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

from startin.errors import AuthorizationError

log = logging.getLogger(__name__)


class AccessRole(str, Enum):
    VIEWER = "viewer"
    COMMENTER = "commenter"
    EDITOR = "editor"


VALID_ROLES = frozenset(r.value for r in AccessRole)

STARTUP_VISIBILITIES = ("public", "invite-only", "private")


def parse_role(role: str | AccessRole) -> AccessRole:
    try:
        return AccessRole(role)
    except ValueError:
        raise ValueError(f"Unknown access role {role!r} (viewer, commenter, editor)") from None


def _grant_for(startup: Any, viewer_id: str, grants: Iterable[Any]) -> Any | None:
    for grant in grants:
        if grant.startup_id == startup.id and grant.user_id == viewer_id and grant.role in VALID_ROLES:
            return grant
    return None


def is_owner(startup: Any, viewer_id: str | None) -> bool:
    owner = getattr(startup, "user_id", None)
    return bool(viewer_id) and bool(owner) and owner == viewer_id


# ---------------------------------------------------------------------------
# Startup-level decisions
# ---------------------------------------------------------------------------


def can_view_sensitive_data(startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> bool:
    """Whether *viewer_id* may see ratings and comments on *startup*.

    First match wins: owner, then public visibility (any signed-in viewer),
    then an explicit grant. Anonymous viewers and startups without
    recognisable visibility are denied.
    """
    if not viewer_id:
        return False
    if is_owner(startup, viewer_id):
        return True
    if getattr(startup, "visibility", None) == "public":
        return True
    return _grant_for(startup, viewer_id, grants) is not None


def resolve_access_role(startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> AccessRole | None:
    """The viewer's role on *startup*: ``editor`` for the owner, else the granted role."""
    if not viewer_id:
        return None
    if is_owner(startup, viewer_id):
        return AccessRole.EDITOR
    grant = _grant_for(startup, viewer_id, grants)
    return AccessRole(grant.role) if grant else None


def can_discover(startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> bool:
    """Whether the startup's public fields may be listed for this viewer."""
    if getattr(startup, "visibility", None) == "public":
        return True
    return resolve_access_role(startup, viewer_id, grants) is not None


def can_edit_startup(startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> bool:
    return resolve_access_role(startup, viewer_id, grants) == AccessRole.EDITOR


# ---------------------------------------------------------------------------
# Rating-level decisions
# ---------------------------------------------------------------------------


def can_view_rating(rating: Any, startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> bool:
    """Per-rating visibility, applied after the startup-level gate.

    ``public`` ratings are visible to everyone, ``private`` only to their
    author, ``inner-circle`` to the owner and grant holders. Authors always
    see their own ratings.
    """
    if viewer_id and rating.user_id == viewer_id:
        return True
    visibility = getattr(rating, "visibility", None) or "public"
    if visibility == "public":
        return True
    if visibility == "inner-circle":
        return resolve_access_role(startup, viewer_id, grants) is not None
    return False


def visible_ratings(ratings: Iterable[Any], startup: Any, viewer_id: str | None, grants: Iterable[Any] = ()) -> list:
    grants = list(grants)
    if not can_view_sensitive_data(startup, viewer_id, grants):
        return []
    return [r for r in ratings if can_view_rating(r, startup, viewer_id, grants)]


# ---------------------------------------------------------------------------
# Mutation policy
# ---------------------------------------------------------------------------


def require_owner(startup: Any, actor_id: str | None, action: str = "manage access") -> None:
    """Raise AuthorizationError unless *actor_id* owns *startup*.

    Every grant/revoke/role-update/delete path goes through here.
    """
    if not is_owner(startup, actor_id):
        log.warning("User %s does not own startup %s (owner %s), cannot %s",
                    actor_id, getattr(startup, "id", None), getattr(startup, "user_id", None), action)
        raise AuthorizationError(f"Only the startup owner can {action}")
