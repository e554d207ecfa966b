from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class UserProfile(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    profile_pic_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Startup(Base):
    __tablename__ = "startups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags_json: Mapped[str] = mapped_column(Text, default="[]")
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    visibility: Mapped[str] = mapped_column(String(20), default="public")  # public | invite-only | private
    status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    asks_and_opportunities: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    ratings: Mapped[list[Rating]] = relationship("Rating", back_populates="startup", cascade="all, delete-orphan")
    grants: Mapped[list[AccessGrant]] = relationship("AccessGrant", back_populates="startup", cascade="all, delete-orphan")
    engagements: Mapped[list[Engagement]] = relationship("Engagement", back_populates="startup", cascade="all, delete-orphan")


class Rating(Base):
    __tablename__ = "startup_ratings"
    __table_args__ = (UniqueConstraint("startup_id", "user_id", "dimension", name="uq_rating_rater_dimension"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    startup_id: Mapped[str] = mapped_column(String(64), ForeignKey("startups.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    dimension: Mapped[str] = mapped_column(String(50), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    visibility: Mapped[str] = mapped_column(String(20), default="public")  # public | private | inner-circle
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    startup: Mapped[Startup] = relationship("Startup", back_populates="ratings")


class AccessGrant(Base):
    __tablename__ = "startup_access"

    startup_id: Mapped[str] = mapped_column(String(64), ForeignKey("startups.id"), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # viewer | commenter | editor
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    startup: Mapped[Startup] = relationship("Startup", back_populates="grants")


class Engagement(Base):
    __tablename__ = "startup_engagements"
    __table_args__ = (UniqueConstraint("startup_id", "user_id", "type", name="uq_engagement"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    startup_id: Mapped[str] = mapped_column(String(64), ForeignKey("startups.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # saved | interest
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    startup: Mapped[Startup] = relationship("Startup", back_populates="engagements")
