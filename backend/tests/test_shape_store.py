import pytest

from collab.collab_errors import ShapeNotFoundError
from collab.shape_store import ShapeStore


def rect(shape_id, x=0, y=0, width=10, height=10):
    return {"id": shape_id, "type": "rectangle", "x": x, "y": y, "width": width, "height": height}


def circle(shape_id, x, y, radius):
    return {"id": shape_id, "type": "circle", "x": x, "y": y, "radius": radius}


def test_add_update_remove():
    store = ShapeStore()
    store.add(rect("a"))
    updated = store.update("a", {"x": 42})
    assert updated["x"] == 42
    assert store.get("a")["width"] == 10

    store.remove("a")
    assert len(store) == 0


def test_add_existing_id_raises():
    store = ShapeStore([rect("a")])
    with pytest.raises(ValueError):
        store.add(rect("a"))


def test_local_mutators_raise_on_unknown_id():
    store = ShapeStore()
    with pytest.raises(ShapeNotFoundError):
        store.update("ghost", {"x": 1})
    with pytest.raises(ShapeNotFoundError):
        store.remove("ghost")


def test_replace_all_drops_duplicate_ids():
    store = ShapeStore()
    store.replace_all([rect("a", x=1), rect("a", x=2), rect("b")])
    assert [s["id"] for s in store.all()] == ["a", "b"]
    assert store.get("a")["x"] == 1


def test_remove_clears_selection():
    store = ShapeStore([rect("a"), rect("b")])
    store.select_many(["a", "b"])
    store.remove("a")
    assert store.selected_ids == ["b"]


def test_select_toggle_clear():
    store = ShapeStore([rect("a"), rect("b")])
    store.select("a")
    assert store.selected_ids == ["a"]

    store.toggle_selection("b")
    assert store.selected_ids == ["a", "b"]

    store.toggle_selection("a")
    assert store.selected_ids == ["b"]

    store.select(None)
    assert store.selected_ids == []

    store.select_many(["a"])
    store.clear_selection()
    assert store.selected_ids == []


def test_select_in_area_any_drag_direction():
    store = ShapeStore([
        rect("inside", x=10, y=10),
        rect("far", x=500, y=500),
        circle("round", x=120, y=120, radius=30),
    ])
    # Dragged from bottom-right to top-left.
    selected = store.select_in_area(100, 100, 0, 0)
    assert set(selected) == {"inside", "round"}
    assert {s["id"] for s in store.selected_shapes()} == {"inside", "round"}


def test_snapshot_is_detached():
    store = ShapeStore([rect("a")])
    snap = store.snapshot("a")
    snap["x"] = 999
    assert store.get("a")["x"] == 0
