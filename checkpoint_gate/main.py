import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from .admin import router as admin_router
from .audit import ScanAuditLog
from .auth import SCANNER_ROLES, Operator, require_roles
from .config import Settings, get_settings
from .credentials import CredentialIssuer, CredentialVerifier
from .db import init_db, make_engine, make_session_factory
from .errors import CheckInError
from .idempotency import get_cached_response, set_cached_response
from .registry import CheckpointRegistry
from .scanner import ScanProcessor
from .schemas import CheckInReq

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, redis: Optional[Redis] = None) -> FastAPI:
    # Missing signing secret fails here, before the app serves anything
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    issuer = CredentialIssuer(settings.signing_secret, ttl_days=settings.credential_ttl_days)
    verifier = CredentialVerifier(settings.signing_secret)

    engine = make_engine(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    init_db(engine)
    session_factory = make_session_factory(engine)

    if redis is None:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)

    audit = ScanAuditLog(session_factory, redis=redis, use_outbox=settings.audit_outbox_enabled)

    app = FastAPI(title="Checkpoint Gate", version="1.0.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis = redis
    app.state.issuer = issuer
    app.state.audit = audit
    app.state.registry = CheckpointRegistry(session_factory)
    app.state.scanner = ScanProcessor(
        session_factory,
        verifier,
        audit,
        enforce_unlocked=settings.enforce_unlocked_checkpoints,
    )

    app.add_exception_handler(CheckInError, _check_in_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(admin_router)
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/check-in", check_in, methods=["POST"])

    logger.info("checkpoint gate ready (outbox=%s, enforce_unlocked=%s)",
                settings.audit_outbox_enabled, settings.enforce_unlocked_checkpoints)
    return app


async def _check_in_error_handler(request: Request, exc: CheckInError):
    if exc.status_code >= 500:
        logger.error("request failed: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "Invalid request", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError):
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]


def health():
    return {"status": "healthy", "service": "checkpoint-gate"}


async def check_in(
    req: CheckInReq,
    request: Request,
    operator: Operator = Depends(require_roles(*SCANNER_ROLES)),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    """
    Operator scan endpoint. Returns the scan outcome with its status code;
    a retried request with the same Idempotency-Key replays the first answer.
    """
    state = request.app.state

    cached = None
    if idempotency_key:
        try:
            cached = await get_cached_response(state.redis, operator.id, idempotency_key)
        except Exception:
            logger.warning("idempotency cache unavailable for key %s", idempotency_key, exc_info=True)
        if cached:
            status_code, body = cached
            return JSONResponse(status_code=status_code, content=body)

    result = await state.scanner.scan(req.credential, req.checkpoint, operator.id)
    body = result.to_response()

    if idempotency_key:
        try:
            await set_cached_response(
                state.redis, operator.id, idempotency_key, result.status_code, body,
                ttl_seconds=state.settings.idempotency_ttl_seconds,
            )
        except Exception:
            logger.warning("could not cache response for idempotency key %s", idempotency_key, exc_info=True)

    return JSONResponse(status_code=result.status_code, content=body)
