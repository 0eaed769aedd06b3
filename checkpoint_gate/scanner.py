"""
Scan processing: credential -> registration -> ordering/idempotency -> commit.

The idempotency check, ordering check and append happen in one database
transaction per scan. Concurrent scans of the same registration at the same
checkpoint are settled by the (registration_id, checkpoint) unique
constraint: exactly one insert commits, the others roll back and report the
winner's entry. Entries are never removed, so an earlier checkpoint seen as
present by the ordering check is still present when the append commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from fastapi.concurrency import run_in_threadpool

from .audit import ScanAuditLog, ScanLogEntry
from .credentials import CredentialClaims, CredentialVerifier
from .errors import InternalError, ValidationError
from .models import (
    CheckpointCheckIn,
    Event,
    Registration,
    RegistrationStatus,
    ScanOutcome,
    utcnow,
)
from .store import get_registration_by_credential

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ScanOutcome.SUCCESS: 200,
    ScanOutcome.INVALID_CREDENTIAL: 400,
    ScanOutcome.WRONG_CHECKPOINT: 400,
    ScanOutcome.NOT_APPROVED: 403,
    ScanOutcome.NOT_FOUND: 404,
    ScanOutcome.ALREADY_CHECKED_IN: 409,
    ScanOutcome.CHECKPOINT_LOCKED: 423,
    ScanOutcome.ERROR: 500,
}

SCANNABLE_STATUSES = (RegistrationStatus.APPROVED.value, RegistrationStatus.CHECKED_IN.value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def entry_to_dict(entry: CheckpointCheckIn) -> Dict[str, Any]:
    return {
        "checkpoint": entry.checkpoint,
        "operator_id": entry.operator_id,
        "checked_in_at": _iso(entry.checked_in_at),
    }


def registration_to_dict(registration: Registration, event: Optional[Event] = None) -> Dict[str, Any]:
    return {
        "id": registration.id,
        "event_id": registration.event_id,
        "event_name": event.name if event else None,
        "participant_id": registration.participant_id,
        "status": registration.status,
        "checkpoint_check_ins": [entry_to_dict(e) for e in registration.check_ins],
    }


def first_missing_checkpoint(checkpoints: List[str], completed: List[str], checkpoint: str) -> Optional[str]:
    """First checkpoint ahead of `checkpoint` in event order that has no entry yet."""
    idx = checkpoints.index(checkpoint)
    done = set(completed)
    for earlier in checkpoints[:idx]:
        if earlier not in done:
            return earlier
    return None


@dataclass
class ScanResult:
    outcome: ScanOutcome
    message: str
    checkpoint: str
    event_id: Optional[str] = None
    participant_id: Optional[str] = None
    registration_id: Optional[str] = None
    registration: Optional[Dict[str, Any]] = None
    previous: Optional[Dict[str, Any]] = None
    missing_checkpoint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ScanOutcome.SUCCESS

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.outcome]

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": self.ok,
            "status": self.outcome.value,
            "message": self.message,
            "checkpoint": self.checkpoint,
            "participant_id": self.participant_id,
            "registration": self.registration,
        }
        if not self.ok:
            body["error"] = self.message
        if self.previous is not None:
            body["previous"] = self.previous
        if self.missing_checkpoint is not None:
            body["missing_checkpoint"] = self.missing_checkpoint
        return body


class ScanProcessor:
    def __init__(
        self,
        session_factory: sessionmaker,
        verifier: CredentialVerifier,
        audit: ScanAuditLog,
        enforce_unlocked: bool = True,
    ):
        self.session_factory = session_factory
        self.verifier = verifier
        self.audit = audit
        self.enforce_unlocked = enforce_unlocked

    async def scan(self, credential: str, checkpoint: str, operator_id: str) -> ScanResult:
        claims = self.verifier.verify(credential)
        if claims is None:
            result = ScanResult(
                outcome=ScanOutcome.INVALID_CREDENTIAL,
                message="Invalid or tampered credential",
                checkpoint=checkpoint,
            )
            await self._record(result, credential, operator_id)
            return result

        try:
            result = await run_in_threadpool(self._apply, claims, credential, checkpoint, operator_id)
        except SQLAlchemyError as e:
            logger.exception("check-in failed event=%s checkpoint=%s", claims.event_id, checkpoint)
            failed = ScanResult(
                outcome=ScanOutcome.ERROR,
                message=str(e),
                checkpoint=checkpoint,
                event_id=claims.event_id,
                participant_id=claims.participant_id,
            )
            await self._record(failed, credential, operator_id)
            raise InternalError("Failed to check in participant") from e

        await self._record(result, credential, operator_id)
        return result

    async def _record(self, result: ScanResult, credential: str, operator_id: str) -> None:
        logger.info(
            "scan outcome=%s event=%s checkpoint=%s registration=%s operator=%s",
            result.outcome.value, result.event_id, result.checkpoint, result.registration_id, operator_id,
        )
        await self.audit.append(
            ScanLogEntry(
                operator_id=operator_id,
                checkpoint=result.checkpoint,
                outcome=result.outcome.value,
                event_id=result.event_id,
                credential=credential,
                error_message=None if result.ok else result.message,
                participant_id=result.participant_id,
                registration_id=result.registration_id,
            )
        )

    def _apply(self, claims: CredentialClaims, credential: str, checkpoint: str, operator_id: str) -> ScanResult:
        with self.session_factory() as db:
            registration = get_registration_by_credential(db, claims.event_id, credential)
            if registration is None:
                return ScanResult(
                    outcome=ScanOutcome.NOT_FOUND,
                    message="Registration not found or credential mismatch",
                    checkpoint=checkpoint,
                    event_id=claims.event_id,
                    participant_id=claims.participant_id,
                )

            event = db.get(Event, registration.event_id)
            if event is None:
                return ScanResult(
                    outcome=ScanOutcome.NOT_FOUND,
                    message="Event not found",
                    checkpoint=checkpoint,
                    event_id=registration.event_id,
                    participant_id=registration.participant_id,
                    registration_id=registration.id,
                )

            if checkpoint not in event.checkpoints:
                raise ValidationError(f"Invalid checkpoint: {checkpoint} is not part of this event")

            def result(outcome: ScanOutcome, message: str, **kw) -> ScanResult:
                return ScanResult(
                    outcome=outcome,
                    message=message,
                    checkpoint=checkpoint,
                    event_id=event.id,
                    participant_id=registration.participant_id,
                    registration_id=registration.id,
                    registration=registration_to_dict(registration, event),
                    **kw,
                )

            if registration.status not in SCANNABLE_STATUSES:
                return result(ScanOutcome.NOT_APPROVED, f"Registration is {registration.status}, not approved")

            existing = registration.entry_for(checkpoint)
            if existing is not None:
                return result(
                    ScanOutcome.ALREADY_CHECKED_IN,
                    f"Already checked in at {checkpoint}",
                    previous=entry_to_dict(existing),
                )

            missing = first_missing_checkpoint(
                event.checkpoints, [e.checkpoint for e in registration.check_ins], checkpoint
            )
            if missing is not None:
                return result(
                    ScanOutcome.WRONG_CHECKPOINT,
                    f"Must complete {missing} before checking into {checkpoint}",
                    missing_checkpoint=missing,
                )

            if self.enforce_unlocked and checkpoint not in (event.unlocked_checkpoints or []):
                return result(ScanOutcome.CHECKPOINT_LOCKED, f"Checkpoint {checkpoint} is not open for scanning")

            return self._commit(db, registration, checkpoint, operator_id, result)

    def _commit(self, db: Session, registration: Registration, checkpoint: str, operator_id: str, result) -> ScanResult:
        now = utcnow()
        entry = CheckpointCheckIn(
            registration_id=registration.id,
            checkpoint=checkpoint,
            operator_id=operator_id,
            checked_in_at=now,
        )
        registration.check_ins.append(entry)
        if registration.status == RegistrationStatus.APPROVED.value:
            registration.status = RegistrationStatus.CHECKED_IN.value
        registration.updated_at = now

        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent scan at this checkpoint
            db.rollback()
            db.expire_all()
            winner = registration.entry_for(checkpoint)
            return result(
                ScanOutcome.ALREADY_CHECKED_IN,
                f"Already checked in at {checkpoint}",
                previous=entry_to_dict(winner) if winner is not None else None,
            )

        return result(ScanOutcome.SUCCESS, f"Checked in at {checkpoint}")
