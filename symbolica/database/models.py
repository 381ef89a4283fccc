"""
symbolica.database.models — SQLAlchemy 2.0 Data Models
=======================================================

The subset of the Symbolica schema the sync layer reads and writes.

Tables:
- profiles             — Public user profiles (auth user id PK)
- symbols              — Catalogued glyphs, motifs and artifacts
- symbol_images        — Images attached to a symbol
- symbol_verifications — Community verification votes on a symbol
- collections          — Curated symbol collections (slug addressed)
- collection_symbols   — Collection ↔ symbol membership
- interest_groups      — Community groups
- group_members        — Group membership
- group_chat_messages  — Group chat (client_id makes resends idempotent)
- treasure_quests      — Collaborative investigations
- quest_participants   — Quest membership + presence (last_seen_at)
- quest_activities     — Append-only quest activity feed
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Symbolica ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class VerificationStatus(enum.StrEnum):
    VERIFIED = "verified"
    DISPUTED = "disputed"
    UNCERTAIN = "uncertain"


class ParticipantStatus(enum.StrEnum):
    ACTIVE = "active"
    LEFT = "left"


class QuestActivityType(enum.StrEnum):
    QUEST_STARTED = "quest_started"
    PARTICIPANT_JOINED = "participant_joined"
    CLUE_DISCOVERED = "clue_discovered"
    THEORY_SUBMITTED = "theory_submitted"
    AI_ASSISTANCE = "ai_assistance"
    QUEST_COMPLETED = "quest_completed"


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    full_name: Mapped[str | None] = mapped_column(String(200), default=None)
    avatar_url: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Profile id={self.id} username={self.username!r}>"


# ---------------------------------------------------------------------------
# Symbols
# ---------------------------------------------------------------------------
class Symbol(Base):
    __tablename__ = "symbols"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    culture: Mapped[str | None] = mapped_column(String(100), default=None)
    period: Mapped[str | None] = mapped_column(String(100), default=None)
    technique: Mapped[str | None] = mapped_column(String(100), default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    images: Mapped[list[SymbolImage]] = relationship(
        back_populates="symbol", cascade="all, delete-orphan"
    )
    verifications: Mapped[list[SymbolVerification]] = relationship(
        back_populates="symbol", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_symbols_culture", "culture"),
        Index("ix_symbols_period", "period"),
    )

    def __repr__(self) -> str:
        return f"<Symbol id={self.id} name={self.name!r}>"


class SymbolImage(Base):
    __tablename__ = "symbol_images"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    symbol_id: Mapped[str] = mapped_column(
        ForeignKey("symbols.id", ondelete="CASCADE"), nullable=False
    )
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    symbol: Mapped[Symbol] = relationship(back_populates="images")


class SymbolVerification(Base):
    __tablename__ = "symbol_verifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    symbol_id: Mapped[str] = mapped_column(
        ForeignKey("symbols.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=VerificationStatus.UNCERTAIN)
    confidence: Mapped[int] = mapped_column(Integer, default=50)
    summary: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    symbol: Mapped[Symbol] = relationship(back_populates="verifications")

    __table_args__ = (
        UniqueConstraint("symbol_id", "user_id", name="uq_verification_symbol_user"),
    )


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------
class Collection(Base):
    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str | None] = mapped_column(String(60), default=None)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[str | None] = mapped_column(String(36), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Collection slug={self.slug!r}>"


class CollectionSymbol(Base):
    __tablename__ = "collection_symbols"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    collection_id: Mapped[str] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    symbol_id: Mapped[str] = mapped_column(
        ForeignKey("symbols.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("collection_id", "symbol_id", name="uq_collection_symbol"),
    )


# ---------------------------------------------------------------------------
# Community groups
# ---------------------------------------------------------------------------
class InterestGroup(Base):
    __tablename__ = "interest_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        ForeignKey("interest_groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="member")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member"),
    )


class GroupChatMessage(Base):
    __tablename__ = "group_chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        ForeignKey("interest_groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), default="text")
    reply_to_id: Mapped[str | None] = mapped_column(String(36), default=None)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    # Generated by the sender; a resend with the same client_id is rejected.
    client_id: Mapped[str | None] = mapped_column(String(36), unique=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_group_chat_messages_group_created", "group_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Treasure quests
# ---------------------------------------------------------------------------
class TreasureQuest(Base):
    __tablename__ = "treasure_quests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(20), default="active")
    max_participants: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class QuestParticipant(Base):
    __tablename__ = "quest_participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quest_id: Mapped[str] = mapped_column(
        ForeignKey("treasure_quests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    role: Mapped[str | None] = mapped_column(String(30), default="explorer")
    status: Mapped[str] = mapped_column(String(20), default=ParticipantStatus.ACTIVE)
    team_name: Mapped[str | None] = mapped_column(String(100), default=None)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_quest_participant"),
    )


class QuestActivity(Base):
    __tablename__ = "quest_activities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quest_id: Mapped[str] = mapped_column(
        ForeignKey("treasure_quests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    activity_data: Mapped[dict | None] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_quest_activities_quest_created", "quest_id", "created_at"),
    )
