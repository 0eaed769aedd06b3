import logging
from typing import Callable, List

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, NotFoundError, ValidationError
from .models import REGISTRATION_CHECKPOINT, Event, utcnow

logger = logging.getLogger(__name__)

Transition = Callable[[List[str], List[str], str], List[str]]


def unlocked_after_unlock(checkpoints: List[str], unlocked: List[str], checkpoint: str) -> List[str]:
    """
    Unlocking anything but Registration closes every other non-Registration
    checkpoint in the same write. Result is kept in event order.
    """
    if checkpoint == REGISTRATION_CHECKPOINT:
        keep = set(unlocked)
    else:
        keep = {c for c in unlocked if c == REGISTRATION_CHECKPOINT}
    keep.add(checkpoint)
    return [c for c in checkpoints if c in keep]


def unlocked_after_lock(checkpoints: List[str], unlocked: List[str], checkpoint: str) -> List[str]:
    return [c for c in checkpoints if c in unlocked and c != checkpoint]


class CheckpointRegistry:
    """Per-event ordered checkpoints and the currently scannable subset."""

    def __init__(self, session_factory: sessionmaker, max_attempts: int = 10):
        self.session_factory = session_factory
        self.max_attempts = max_attempts

    def unlock(self, event_id: str, checkpoint: str) -> List[str]:
        return self._apply(event_id, checkpoint, unlocked_after_unlock, "unlock")

    def lock(self, event_id: str, checkpoint: str) -> List[str]:
        return self._apply(event_id, checkpoint, unlocked_after_lock, "lock")

    def unlocked(self, event_id: str) -> List[str]:
        with self.session_factory() as db:
            event = db.get(Event, event_id)
            if event is None:
                raise NotFoundError(f"Event {event_id} not found")
            return list(event.unlocked_checkpoints or [])

    def is_unlocked(self, event_id: str, checkpoint: str) -> bool:
        return checkpoint in self.unlocked(event_id)

    def _apply(self, event_id: str, checkpoint: str, transition: Transition, action: str) -> List[str]:
        for attempt in range(1, self.max_attempts + 1):
            with self.session_factory() as db:
                event = db.execute(
                    select(Event).where(Event.id == event_id).with_for_update()
                ).scalar_one_or_none()
                if event is None:
                    raise NotFoundError(f"Event {event_id} not found")
                if checkpoint not in event.checkpoints:
                    raise ValidationError(f"Checkpoint {checkpoint} does not exist in this event")

                current = list(event.unlocked_checkpoints or [])
                updated = transition(event.checkpoints, current, checkpoint)
                if updated == current:
                    return updated

                # Assign a new list so the JSON column is flagged dirty
                event.unlocked_checkpoints = updated
                event.updated_at = utcnow()
                try:
                    db.commit()
                except StaleDataError:
                    db.rollback()
                    logger.info("checkpoint %s on %s raced another update (attempt %d)", action, event_id, attempt)
                    continue

                logger.info("checkpoint %s event=%s checkpoint=%s unlocked=%s", action, event_id, checkpoint, updated)
                return updated

        raise ConflictError("Checkpoints were updated concurrently, please retry")
