import asyncio

from collab.lock_coordinator import LOCK_TIMEOUT_MS, LockCoordinator
from collab.scheduler import ManualScheduler
from db.persistence_service import InMemoryPersistenceService


def setup_locks():
    clock = ManualScheduler(start_ms=10_000)
    persistence = InMemoryPersistenceService(clock=clock.now)
    asyncio.run(persistence.create_shape({"id": "s1", "type": "rectangle", "x": 0, "y": 0, "width": 5, "height": 5}))
    return LockCoordinator(persistence, clock=clock.now), persistence, clock


def stored(persistence, shape_id="s1"):
    return asyncio.run(persistence.fetch_shape(shape_id))


def test_acquire_unlocked_shape():
    locks, persistence, _ = setup_locks()
    assert asyncio.run(locks.acquire("s1", "alice")) is True

    shape = stored(persistence)
    assert shape["locked_by"] == "alice"
    assert shape["locked_at"] == 10_000


def test_acquire_denied_while_held_by_other():
    locks, persistence, clock = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))
    clock.advance(1000)

    assert asyncio.run(locks.acquire("s1", "bob")) is False
    assert stored(persistence)["locked_by"] == "alice"


def test_reacquire_by_holder_refreshes_timestamp():
    locks, persistence, clock = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))
    clock.advance(5000)

    assert asyncio.run(locks.acquire("s1", "alice")) is True
    assert stored(persistence)["locked_at"] == 15_000


def test_lock_expires_after_timeout():
    locks, persistence, clock = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))

    clock.advance(LOCK_TIMEOUT_MS)
    # Exactly at the timeout the lock still holds.
    assert asyncio.run(locks.acquire("s1", "bob")) is False

    clock.advance(1)
    assert asyncio.run(locks.acquire("s1", "bob")) is True
    assert stored(persistence)["locked_by"] == "bob"


def test_acquire_missing_shape_returns_false():
    locks, _, _ = setup_locks()
    assert asyncio.run(locks.acquire("ghost", "alice")) is False


def test_release_by_holder_clears_fields():
    locks, persistence, _ = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))

    assert asyncio.run(locks.release("s1", "alice")) is True
    shape = stored(persistence)
    assert shape["locked_by"] is None
    assert shape["locked_at"] is None


def test_release_by_other_actor_is_refused():
    locks, persistence, _ = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))

    assert asyncio.run(locks.release("s1", "bob")) is False
    assert stored(persistence)["locked_by"] == "alice"


def test_unconditional_release():
    locks, persistence, _ = setup_locks()
    asyncio.run(locks.acquire("s1", "alice"))

    assert asyncio.run(locks.release("s1")) is True
    assert stored(persistence)["locked_by"] is None


def test_is_locked_by_other():
    locks, _, clock = setup_locks()
    shape = {"id": "s1", "locked_by": "alice", "locked_at": clock.now()}

    assert locks.is_locked_by_other(shape, "bob") is True
    assert locks.is_locked_by_other(shape, "alice") is False
    assert locks.is_locked_by_other({"id": "s2", "locked_by": None}, "bob") is False

    clock.advance(LOCK_TIMEOUT_MS + 1)
    assert locks.is_locked_by_other(shape, "bob") is False
