import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from canvas.shape import ChangeKind
from db.database import Base, init_db, make_engine
from db.persistence_service import PersistenceError, SqlPersistenceService

engine = make_engine("sqlite://")
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def service():
    init_db(engine)
    yield SqlPersistenceService(TestingSessionLocal, clock=lambda: 5_000)
    Base.metadata.drop_all(bind=engine)


def rect(shape_id, x=0):
    return {"id": shape_id, "type": "rectangle", "x": x, "y": 0, "width": 10, "height": 10, "locked_by": None}


def test_create_fetch_and_list(service):
    asyncio.run(service.create_shape(rect("b")))
    asyncio.run(service.create_shape(rect("a", x=7)))

    assert asyncio.run(service.fetch_shape("a")) == rect("a", x=7)
    assert [s["id"] for s in asyncio.run(service.fetch_all_shapes())] == ["a", "b"]
    assert asyncio.run(service.fetch_shape("missing")) is None


def test_update_merges_and_stamps(service):
    asyncio.run(service.create_shape(rect("a")))
    asyncio.run(service.update_shape("a", {"x": 42, "locked_by": "alice"}))

    shape = asyncio.run(service.fetch_shape("a"))
    assert shape["x"] == 42
    assert shape["locked_by"] == "alice"
    assert shape["width"] == 10
    assert shape["last_modified_at"] == 5_000


def test_update_missing_shape_raises(service):
    with pytest.raises(PersistenceError):
        asyncio.run(service.update_shape("ghost", {"x": 1}))


def test_delete_missing_shape_is_noop(service):
    asyncio.run(service.delete_shape("ghost"))
    assert asyncio.run(service.fetch_all_shapes()) == []


def test_subscribers_receive_snapshot_and_writes(service):
    asyncio.run(service.create_shape(rect("a")))

    batches = []
    unsubscribe = service.subscribe_to_shapes(batches.append)
    assert [(e.kind, e.shape_id) for e in batches[0]] == [(ChangeKind.ADDED, "a")]

    asyncio.run(service.create_shape(rect("b")))
    asyncio.run(service.update_shape("a", {"x": 3}))
    asyncio.run(service.create_shape(rect("b", x=9)))
    asyncio.run(service.delete_shape("a"))

    kinds = [(batch[0].kind, batch[0].shape_id) for batch in batches[1:]]
    assert kinds == [
        (ChangeKind.ADDED, "b"),
        (ChangeKind.MODIFIED, "a"),
        (ChangeKind.MODIFIED, "b"),
        (ChangeKind.REMOVED, "a"),
    ]

    unsubscribe()
    asyncio.run(service.delete_shape("b"))
    assert len(batches) == 5


def test_update_shapes_batches_and_skips_missing(service):
    asyncio.run(service.create_shape(rect("a")))
    asyncio.run(service.create_shape(rect("b")))

    batches = []
    service.subscribe_to_shapes(batches.append)
    skipped = asyncio.run(service.update_shapes({"a": {"x": 1}, "ghost": {"x": 2}, "b": {"x": 3}}))

    assert skipped == ["ghost"]
    assert [(e.kind, e.shape_id) for e in batches[-1]] == [(ChangeKind.MODIFIED, "a"), (ChangeKind.MODIFIED, "b")]
    assert asyncio.run(service.fetch_shape("a"))["x"] == 1
    assert asyncio.run(service.fetch_shape("b"))["last_modified_at"] == 5_000
    assert asyncio.run(service.fetch_shape("ghost")) is None
