from typing import Optional

from fastapi import APIRouter, Depends, Request

from .auth import MANAGER_ROLES, SCANNER_ROLES, Operator, require_roles
from .models import RegistrationStatus, ScanOutcome
from .schemas import CheckpointToggleReq, CreateEventReq, CreateRegistrationReq
from .errors import ValidationError
from . import store

router = APIRouter(prefix="/admin", tags=["admin"])


# -------------------------
# Events
# -------------------------
@router.post("/events", status_code=201)
def create_event(req: CreateEventReq, request: Request, operator: Operator = Depends(require_roles(*MANAGER_ROLES))):
    with request.app.state.session_factory() as db:
        event = store.create_event(db, req.name, req.checkpoints)
        return {
            "ok": True,
            "event_id": event.id,
            "name": event.name,
            "checkpoints": event.checkpoints,
            "unlocked_checkpoints": event.unlocked_checkpoints,
        }


@router.get("/events")
def list_events(request: Request, operator: Operator = Depends(require_roles(*SCANNER_ROLES))):
    with request.app.state.session_factory() as db:
        return [
            {
                "event_id": e.id,
                "name": e.name,
                "checkpoints": e.checkpoints,
                "unlocked_checkpoints": e.unlocked_checkpoints,
                "created_at": str(e.created_at),
            }
            for e in store.list_events(db)
        ]


@router.post("/events/{event_id}/registrations", status_code=201)
def create_registration(
    event_id: str,
    req: CreateRegistrationReq,
    request: Request,
    operator: Operator = Depends(require_roles(*MANAGER_ROLES)),
):
    with request.app.state.session_factory() as db:
        registration = store.create_registration(
            db,
            request.app.state.issuer,
            event_id,
            req.participant_id,
            status=RegistrationStatus(req.status),
            approved_by=operator.id,
        )
        return {
            "ok": True,
            "registration_id": registration.id,
            "participant_id": registration.participant_id,
            "status": registration.status,
            "credential": registration.credential,
        }


# -------------------------
# Checkpoint toggle
# -------------------------
@router.get("/events/{event_id}/checkpoints")
def get_checkpoints(event_id: str, request: Request, operator: Operator = Depends(require_roles(*SCANNER_ROLES))):
    with request.app.state.session_factory() as db:
        event = store.require_event(db, event_id)
        return {
            "event_id": event.id,
            "checkpoints": event.checkpoints,
            "unlocked_checkpoints": event.unlocked_checkpoints,
        }


@router.post("/events/{event_id}/checkpoints")
def toggle_checkpoint(
    event_id: str,
    req: CheckpointToggleReq,
    request: Request,
    operator: Operator = Depends(require_roles(*MANAGER_ROLES)),
):
    registry = request.app.state.registry
    if req.action == "unlock":
        unlocked = registry.unlock(event_id, req.checkpoint)
    else:
        unlocked = registry.lock(event_id, req.checkpoint)
    return {"ok": True, "event_id": event_id, "unlocked_checkpoints": unlocked}


# -------------------------
# Scan logs
# -------------------------
@router.get("/scan-logs")
def get_scan_logs(
    request: Request,
    event_id: Optional[str] = None,
    outcome: Optional[str] = None,
    failed_only: bool = False,
    limit: int = 200,
    operator: Operator = Depends(require_roles(*MANAGER_ROLES)),
):
    if outcome is not None and outcome not in {o.value for o in ScanOutcome}:
        raise ValidationError(f"Unknown outcome: {outcome}")
    if limit < 1 or limit > 1000:
        raise ValidationError("limit must be between 1 and 1000")

    rows = request.app.state.audit.query(event_id=event_id, outcome=outcome, failed_only=failed_only, limit=limit)
    return [
        {
            "id": log.id,
            "created_at": str(log.created_at),
            "event_id": log.event_id,
            "operator_id": log.operator_id,
            "checkpoint": log.checkpoint,
            "outcome": log.outcome,
            "error_message": log.error_message,
            "participant_id": log.participant_id,
            "registration_id": log.registration_id,
        }
        for log in rows
    ]
