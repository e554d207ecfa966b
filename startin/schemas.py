"""Pydantic request/response schemas for the StartIn API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_validator

from startin.ratings import MAX_SCORE, MIN_SCORE, RATING_DIMENSIONS

StartupVisibility = Literal["public", "invite-only", "private"]
RatingVisibility = Literal["public", "private", "inner-circle"]
Role = Literal["viewer", "commenter", "editor"]
EngagementType = Literal["saved", "interest"]

PREDEFINED_STATUSES: dict[str, str] = {
    "Discovery": "Exploring the idea and market opportunity",
    "Active": "Currently working on and pursuing this startup",
    "Back-burner": "Paused temporarily but may resume later",
    "Not Pursuing": "Decided not to move forward with this startup",
    "Exited": "Successfully sold, acquired, or IPO'd",
    "Archived": "Completed or closed down the startup",
}


class RatingOut(BaseModel):
    id: str
    dimension: str
    score: int
    comment: str | None = None
    user_id: str
    visibility: str = "public"
    created_at: datetime | None = None


class DimensionRatingOut(BaseModel):
    avg: float
    count: int


class EnrichedStartup(BaseModel):
    """A startup as one viewer sees it: base fields plus ratings and flags."""

    id: str
    user_id: str
    name: str
    summary: str | None = None
    description: str | None = None
    tags: list[str] = []
    logo_url: str | None = None
    visibility: str = "public"
    status: str | None = None
    asks_and_opportunities: str | None = None
    website_url: str | None = None
    created_at: datetime | None = None
    creator_name: str = "Unknown"
    avg_rating: float | None = None
    dimension_ratings: dict[str, DimensionRatingOut] = {}
    user_ratings: list[RatingOut] = []
    saved: bool = False
    interested: bool = False
    access_role: str | None = None


class StartupListResponse(BaseModel):
    items: list[EnrichedStartup]
    total: int
    page: int
    per_page: int


class StartupCreate(BaseModel):
    name: str
    summary: str | None = None
    description: str | None = None
    tags: list[str] = []
    logo_url: str | None = None
    visibility: StartupVisibility = "public"
    status: str | None = None
    asks_and_opportunities: str | None = None
    website_url: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()


class StartupUpdate(BaseModel):
    name: str | None = None
    summary: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    logo_url: str | None = None
    visibility: StartupVisibility | None = None
    status: str | None = None
    asks_and_opportunities: str | None = None
    website_url: str | None = None


class DimensionScoreIn(BaseModel):
    score: int
    comment: str | None = None

    @field_validator("score")
    @classmethod
    def score_in_range(cls, v: int) -> int:
        if not MIN_SCORE <= v <= MAX_SCORE:
            raise ValueError(f"score must be between {MIN_SCORE} and {MAX_SCORE}")
        return v


class RatingSubmission(BaseModel):
    """A complete rating: one score for each of the six dimensions."""

    scores: dict[str, DimensionScoreIn]
    visibility: RatingVisibility = "public"

    @field_validator("scores")
    @classmethod
    def all_dimensions_present(cls, v: dict[str, DimensionScoreIn]) -> dict[str, DimensionScoreIn]:
        unknown = set(v) - set(RATING_DIMENSIONS)
        if unknown:
            raise ValueError(f"unknown dimensions: {', '.join(sorted(unknown))}")
        missing = set(RATING_DIMENSIONS) - set(v)
        if missing:
            raise ValueError(f"missing scores for: {', '.join(sorted(missing))}")
        return v


class AccessGrantIn(BaseModel):
    role: Role = "viewer"


class AccessGrantOut(BaseModel):
    startup_id: str
    user_id: str
    role: str


class AccessCheckOut(BaseModel):
    has_access: bool
    role: str | None = None


class EngagementToggleOut(BaseModel):
    startup_id: str
    type: str
    active: bool


class EngagementsOut(BaseModel):
    saved: list[str]
    interested: list[str]


class ProfileUpdate(BaseModel):
    name: str | None = None
    profile_pic_url: str | None = None


class ProfileOut(BaseModel):
    id: str
    name: str | None = None
    profile_pic_url: str | None = None


class StatsOut(BaseModel):
    total: int
    ratings: int
    by_visibility: dict[str, int]
    by_status: dict[str, int]
