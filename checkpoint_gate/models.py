import enum
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

REGISTRATION_CHECKPOINT = "Registration"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHECKED_IN = "checked-in"


class ScanOutcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    INVALID_CREDENTIAL = "invalid_credential"
    NOT_FOUND = "not_found"
    WRONG_CHECKPOINT = "wrong_checkpoint"
    ALREADY_CHECKED_IN = "already_checked_in"
    NOT_APPROVED = "not_approved"
    CHECKPOINT_LOCKED = "checkpoint_locked"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, index=True)
    checkpoints: Mapped[List[str]] = mapped_column(JSON, default=lambda: [REGISTRATION_CHECKPOINT])
    unlocked_checkpoints: Mapped[List[str]] = mapped_column(JSON, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __mapper_args__ = {"version_id_col": version}


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id"), index=True)
    participant_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default=RegistrationStatus.PENDING.value)
    credential: Mapped[str] = mapped_column(Text, unique=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    check_ins: Mapped[List["CheckpointCheckIn"]] = relationship(
        back_populates="registration",
        order_by="CheckpointCheckIn.id",
        lazy="selectin",
    )

    def entry_for(self, checkpoint: str) -> Optional["CheckpointCheckIn"]:
        for entry in self.check_ins:
            if entry.checkpoint == checkpoint:
                return entry
        return None


class CheckpointCheckIn(Base):
    __tablename__ = "checkpoint_check_ins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_id: Mapped[str] = mapped_column(ForeignKey("registrations.id"), index=True)
    checkpoint: Mapped[str] = mapped_column(String)
    operator_id: Mapped[str] = mapped_column(String)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    registration: Mapped[Registration] = relationship(back_populates="check_ins")

    __table_args__ = (UniqueConstraint("registration_id", "checkpoint", name="uniq_registration_checkpoint"),)


class ScanLog(Base):
    __tablename__ = "scan_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    operator_id: Mapped[str] = mapped_column(String, index=True)
    credential: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checkpoint: Mapped[str] = mapped_column(String)
    outcome: Mapped[str] = mapped_column(String, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    participant_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    registration_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
