import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from fastapi.concurrency import run_in_threadpool

from .models import ScanLog, ScanOutcome, utcnow

logger = logging.getLogger(__name__)

AUDIT_STREAM = "scan_audit_outbox"


@dataclass
class ScanLogEntry:
    operator_id: str
    checkpoint: str
    outcome: str
    event_id: Optional[str] = None
    credential: Optional[str] = None
    error_message: Optional[str] = None
    participant_id: Optional[str] = None
    registration_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_stream_fields(self) -> Dict[str, str]:
        # Redis stream values are flat strings; absent values are dropped
        out = {}
        for k, v in asdict(self).items():
            if v is None:
                continue
            out[k] = v.isoformat() if isinstance(v, datetime) else str(v)
        return out

    @classmethod
    def from_stream_fields(cls, data: Dict[str, str]) -> "ScanLogEntry":
        values = dict(data)
        values["created_at"] = datetime.fromisoformat(values["created_at"])
        return cls(**values)

    def to_row(self) -> ScanLog:
        return ScanLog(**asdict(self))


def write_entry(session_factory: sessionmaker, entry: ScanLogEntry) -> None:
    with session_factory() as db:
        db.add(entry.to_row())
        db.commit()


class ScanAuditLog:
    """
    Append-only record of every scan attempt.

    append() never raises: a lost audit entry must not turn a completed
    check-in into a failure for the operator.
    """

    def __init__(self, session_factory: sessionmaker, redis=None, use_outbox: bool = True):
        self.session_factory = session_factory
        self.redis = redis
        self.use_outbox = use_outbox and redis is not None

    async def append(self, entry: ScanLogEntry) -> None:
        if self.use_outbox:
            try:
                await self.redis.xadd(AUDIT_STREAM, entry.to_stream_fields())
                return
            except Exception:
                logger.warning("audit outbox unavailable, writing scan %s directly", entry.id, exc_info=True)

        try:
            await run_in_threadpool(self._write_direct, entry)
        except Exception:
            logger.exception(
                "failed to record scan audit entry id=%s outcome=%s checkpoint=%s",
                entry.id, entry.outcome, entry.checkpoint,
            )

    def _write_direct(self, entry: ScanLogEntry) -> None:
        write_entry(self.session_factory, entry)

    def query(
        self,
        event_id: Optional[str] = None,
        outcome: Optional[str] = None,
        failed_only: bool = False,
        limit: int = 200,
    ) -> List[ScanLog]:
        q = select(ScanLog)
        if event_id:
            q = q.where(ScanLog.event_id == event_id)
        if outcome:
            q = q.where(ScanLog.outcome == outcome)
        if failed_only:
            q = q.where(ScanLog.outcome != ScanOutcome.SUCCESS.value)
        q = q.order_by(ScanLog.created_at.desc()).limit(limit)

        with self.session_factory() as db:
            return list(db.execute(q).scalars().all())
