import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
CREDENTIAL_TYPE = "participant-checkin"
REQUIRED_CLAIMS = ("participant_id", "event_id", "nonce")


@dataclass(frozen=True)
class CredentialClaims:
    kind: str
    participant_id: str
    event_id: str
    nonce: str
    expires_at: Optional[datetime] = None


def _require_secret(secret: Optional[str]) -> str:
    if not secret:
        raise ConfigurationError("credential signing secret is not configured")
    return secret


class CredentialIssuer:
    def __init__(self, secret: str, ttl_days: int = 30):
        self._secret = _require_secret(secret)
        self._ttl = timedelta(days=ttl_days)

    def issue(self, participant_id: str, event_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "type": CREDENTIAL_TYPE,
            "participant_id": participant_id,
            "event_id": event_id,
            "nonce": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)


def _is_canonical_segment(segment: str) -> bool:
    # base64url decoders ignore stray characters and unused trailing bits, so
    # compare against the re-encoded form to catch every edited character.
    if not segment:
        return False
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError):
        return False
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == segment


class CredentialVerifier:
    """Validates credential integrity. Returns None instead of raising."""

    def __init__(self, secret: str):
        self._secret = _require_secret(secret)

    def verify(self, credential: Optional[str]) -> Optional[CredentialClaims]:
        if not isinstance(credential, str):
            return None

        segments = credential.split(".")
        if len(segments) != 3 or not all(_is_canonical_segment(s) for s in segments):
            logger.debug("credential rejected: malformed structure")
            return None

        try:
            payload = jwt.decode(credential, self._secret, algorithms=[ALGORITHM])
        except JWTError as e:
            logger.debug("credential rejected: %s", e)
            return None

        if payload.get("type") != CREDENTIAL_TYPE:
            logger.debug("credential rejected: unexpected type %r", payload.get("type"))
            return None

        for k in REQUIRED_CLAIMS:
            if not isinstance(payload.get(k), str) or not payload[k]:
                logger.debug("credential rejected: missing claim %s", k)
                return None

        exp = payload.get("exp")
        return CredentialClaims(
            kind=payload["type"],
            participant_id=payload["participant_id"],
            event_id=payload["event_id"],
            nonce=payload["nonce"],
            expires_at=datetime.fromtimestamp(exp, timezone.utc) if isinstance(exp, (int, float)) else None,
        )
