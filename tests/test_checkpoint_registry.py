import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from checkpoint_gate import store
from checkpoint_gate.db import init_db, make_engine, make_session_factory
from checkpoint_gate.errors import NotFoundError, ValidationError
from checkpoint_gate.models import REGISTRATION_CHECKPOINT
from checkpoint_gate.registry import CheckpointRegistry, unlocked_after_lock, unlocked_after_unlock

CHECKPOINTS = ["Registration", "Breakfast", "Lunch", "Dinner", "Party"]


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'registry.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def registry(session_factory):
    return CheckpointRegistry(session_factory)


@pytest.fixture
def event_id(session_factory):
    with session_factory() as db:
        return store.create_event(db, "Hackathon", CHECKPOINTS).id


def non_registration(unlocked):
    return [c for c in unlocked if c != REGISTRATION_CHECKPOINT]


def test_new_event_has_only_registration_unlocked(registry, event_id):
    assert registry.unlocked(event_id) == ["Registration"]
    assert registry.is_unlocked(event_id, "Registration")
    assert not registry.is_unlocked(event_id, "Lunch")


def test_unlock_closes_previously_open_checkpoint(registry, event_id):
    assert registry.unlock(event_id, "Lunch") == ["Registration", "Lunch"]
    assert registry.unlock(event_id, "Dinner") == ["Registration", "Dinner"]
    assert not registry.is_unlocked(event_id, "Lunch")


def test_unlocking_registration_keeps_active_checkpoint(registry, event_id):
    registry.lock(event_id, "Registration")
    registry.unlock(event_id, "Dinner")
    assert registry.unlock(event_id, "Registration") == ["Registration", "Dinner"]


def test_lock(registry, event_id):
    registry.unlock(event_id, "Lunch")
    assert registry.lock(event_id, "Lunch") == ["Registration"]
    assert registry.lock(event_id, "Lunch") == ["Registration"]
    assert registry.lock(event_id, "Registration") == []


def test_unknown_checkpoint_is_rejected(registry, event_id):
    with pytest.raises(ValidationError):
        registry.unlock(event_id, "Karaoke")
    with pytest.raises(ValidationError):
        registry.lock(event_id, "Karaoke")


def test_unknown_event(registry):
    with pytest.raises(NotFoundError):
        registry.unlock("evt_missing", "Lunch")
    with pytest.raises(NotFoundError):
        registry.unlocked("evt_missing")


def test_transitions_keep_event_order():
    unlocked = unlocked_after_unlock(CHECKPOINTS, ["Party"], "Registration")
    assert unlocked == ["Registration", "Party"]
    assert unlocked_after_lock(CHECKPOINTS, unlocked, "Party") == ["Registration"]


def test_random_toggle_sequence_keeps_single_active_checkpoint(registry, event_id):
    rng = random.Random(7)
    for _ in range(150):
        checkpoint = rng.choice(CHECKPOINTS)
        if rng.random() < 0.6:
            unlocked = registry.unlock(event_id, checkpoint)
        else:
            unlocked = registry.lock(event_id, checkpoint)
        assert len(non_registration(unlocked)) <= 1, unlocked
        assert registry.unlocked(event_id) == unlocked


def test_concurrent_unlocks_leave_one_active_checkpoint(registry, event_id):
    targets = ["Breakfast", "Lunch", "Dinner", "Party"] * 2

    with ThreadPoolExecutor(max_workers=len(targets)) as pool:
        results = list(pool.map(lambda cp: registry.unlock(event_id, cp), targets))

    for unlocked in results:
        assert len(non_registration(unlocked)) == 1
    final = registry.unlocked(event_id)
    assert "Registration" in final
    assert len(non_registration(final)) == 1
