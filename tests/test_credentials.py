import random
import string

import pytest
from jose import jwt

from checkpoint_gate.config import Settings
from checkpoint_gate.credentials import CREDENTIAL_TYPE, CredentialIssuer, CredentialVerifier
from checkpoint_gate.errors import ConfigurationError
from checkpoint_gate.main import create_app

SECRET = "credential_test_secret"


@pytest.fixture
def issuer():
    return CredentialIssuer(SECRET)


@pytest.fixture
def verifier():
    return CredentialVerifier(SECRET)


def test_issue_then_verify_returns_claims(issuer, verifier):
    token = issuer.issue("p_42", "evt_1")
    claims = verifier.verify(token)

    assert claims is not None
    assert claims.kind == CREDENTIAL_TYPE
    assert claims.participant_id == "p_42"
    assert claims.event_id == "evt_1"
    assert claims.nonce
    assert claims.expires_at is not None


def test_each_issue_is_unique(issuer, verifier):
    a = issuer.issue("p_1", "evt_1")
    b = issuer.issue("p_1", "evt_1")
    assert a != b
    assert verifier.verify(a).nonce != verifier.verify(b).nonce


def test_any_changed_character_fails_verification(issuer, verifier):
    token = issuer.issue("p_1", "evt_1")
    for i, c in enumerate(token):
        replacement = "A" if c != "A" else "B"
        tampered = token[:i] + replacement + token[i + 1:]
        assert verifier.verify(tampered) is None, f"edit at position {i} was accepted"


def test_any_flipped_byte_fails_verification(issuer, verifier):
    raw = bytearray(issuer.issue("p_1", "evt_1").encode("ascii"))
    for i in range(len(raw)):
        flipped = bytearray(raw)
        flipped[i] ^= 0x01
        assert verifier.verify(flipped.decode("latin-1")) is None, f"flip at byte {i} was accepted"


def test_truncated_or_extended_credential_fails(issuer, verifier):
    token = issuer.issue("p_1", "evt_1")
    assert verifier.verify(token[:-1]) is None
    assert verifier.verify(token + "A") is None
    assert verifier.verify(token + ".") is None


@pytest.mark.parametrize("junk", ["", "not-a-credential", "a.b.c", "...", None, 12345])
def test_garbage_is_rejected_without_raising(verifier, junk):
    assert verifier.verify(junk) is None


def test_random_strings_are_rejected(verifier):
    rng = random.Random(1234)
    alphabet = string.ascii_letters + string.digits + "-_."
    for _ in range(200):
        junk = "".join(rng.choice(alphabet) for _ in range(rng.randint(1, 300)))
        assert verifier.verify(junk) is None


def test_other_secret_is_rejected(verifier):
    token = CredentialIssuer("someone_elses_secret").issue("p_1", "evt_1")
    assert verifier.verify(token) is None


def test_expired_credential_is_rejected(verifier):
    token = CredentialIssuer(SECRET, ttl_days=-1).issue("p_1", "evt_1")
    assert verifier.verify(token) is None


def test_wrong_kind_is_rejected(verifier):
    token = jwt.encode(
        {"type": "session", "participant_id": "p_1", "event_id": "evt_1", "nonce": "n"},
        SECRET,
        algorithm="HS256",
    )
    assert verifier.verify(token) is None


def test_missing_claim_is_rejected(verifier):
    token = jwt.encode({"type": CREDENTIAL_TYPE, "participant_id": "p_1", "nonce": "n"}, SECRET, algorithm="HS256")
    assert verifier.verify(token) is None


def test_missing_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        CredentialIssuer("")
    with pytest.raises(ConfigurationError):
        CredentialVerifier(None)


def test_settings_require_signing_secret(monkeypatch):
    monkeypatch.delenv("CHECKIN_SIGNING_SECRET", raising=False)
    with pytest.raises(ConfigurationError):
        Settings.from_env()


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("CHECKIN_SIGNING_SECRET", "s3cret")
    monkeypatch.delenv("SESSION_SECRET", raising=False)
    monkeypatch.setenv("ENFORCE_UNLOCKED_CHECKPOINTS", "false")
    monkeypatch.setenv("CREDENTIAL_TTL_DAYS", "7")

    s = Settings.from_env()
    assert s.signing_secret == "s3cret"
    assert s.session_secret == "s3cret"
    assert s.enforce_unlocked_checkpoints is False
    assert s.credential_ttl_days == 7


def test_app_refuses_to_start_without_secret(tmp_path):
    settings = Settings(signing_secret="", session_secret="x", database_url=f"sqlite:///{tmp_path / 'x.db'}")
    with pytest.raises(ConfigurationError):
        create_app(settings, redis=object())
