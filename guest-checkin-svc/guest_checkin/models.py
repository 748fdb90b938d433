from __future__ import annotations
import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.types import DateTime, String, Enum

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class InviteStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"

class Invite(Base):
    """Guest directory row; created upstream, read here for display names."""
    __tablename__ = "invites"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # the guest code
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[InviteStatus] = mapped_column(Enum(InviteStatus), default=InviteStatus.PENDING, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class Checkin(Base):
    __tablename__ = "checkins"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    accepted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    accepted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)  # device/operator (optional)
    attempt_id: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "code", name="uq_checkin_per_code_per_event"),
        Index("ix_checkins_event_accepted", "event_id", "accepted_at"),
    )
