"""
Data access for events, registrations and their check-in history.
Registration approval belongs to the registration workflow; the helpers
here let the seeding endpoints mint credentials through the same issuer the
scanner verifies against.
"""

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .credentials import CredentialIssuer
from .errors import NotFoundError, ValidationError
from .models import (
    REGISTRATION_CHECKPOINT,
    Event,
    Registration,
    RegistrationStatus,
    utcnow,
)


def _gen_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:8]}"


def normalize_checkpoints(checkpoints: Optional[List[str]]) -> List[str]:
    if not checkpoints:
        return [REGISTRATION_CHECKPOINT]

    names = [c.strip() if isinstance(c, str) else "" for c in checkpoints]
    if any(not n for n in names):
        raise ValidationError("checkpoint names must be non-empty strings")
    if len(set(names)) != len(names):
        raise ValidationError("checkpoint names must be unique")
    return names


def create_event(db: Session, name: str, checkpoints: Optional[List[str]] = None, event_id: Optional[str] = None) -> Event:
    names = normalize_checkpoints(checkpoints)
    event = Event(
        id=event_id or _gen_event_id(),
        name=name,
        checkpoints=names,
        # Only the Registration desk is open when an event is created
        unlocked_checkpoints=[REGISTRATION_CHECKPOINT] if REGISTRATION_CHECKPOINT in names else [],
    )
    db.add(event)
    db.commit()
    return event


def get_event(db: Session, event_id: str) -> Optional[Event]:
    return db.get(Event, event_id)


def require_event(db: Session, event_id: str) -> Event:
    event = get_event(db, event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    return event


def list_events(db: Session) -> List[Event]:
    return list(db.execute(select(Event).order_by(Event.created_at.desc())).scalars().all())


def create_registration(
    db: Session,
    issuer: CredentialIssuer,
    event_id: str,
    participant_id: str,
    status: RegistrationStatus = RegistrationStatus.PENDING,
    approved_by: Optional[str] = None,
) -> Registration:
    require_event(db, event_id)

    now = utcnow()
    registration = Registration(
        event_id=event_id,
        participant_id=participant_id,
        status=status.value,
        credential=issuer.issue(participant_id, event_id),
        created_at=now,
        updated_at=now,
    )
    if status == RegistrationStatus.APPROVED:
        registration.approved_by = approved_by
        registration.approved_at = now

    db.add(registration)
    db.commit()
    return registration


def get_registration_by_credential(db: Session, event_id: str, credential: str) -> Optional[Registration]:
    return db.execute(
        select(Registration).where(Registration.event_id == event_id, Registration.credential == credential)
    ).scalar_one_or_none()

