import asyncio
import time
import unittest

from fastapi.testclient import TestClient

from api_app import app
from collab.session_store import SessionStore
from db.deps import get_persistence, get_session_store
from db.persistence_service import InMemoryPersistenceService


class TestCanvasAPI(unittest.TestCase):
    def setUp(self):
        # Fresh shared store and session registry per test.
        self.persistence = InMemoryPersistenceService()
        self.sessions = SessionStore()
        app.dependency_overrides[get_persistence] = lambda: self.persistence
        app.dependency_overrides[get_session_store] = lambda: self.sessions
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def open_session(self, actor_id="alice"):
        res = self.client.post("/canvas/sessions", json={"actorId": actor_id})
        self.assertEqual(res.status_code, 200)
        return res.json()["sessionId"]

    def create_rect(self, session_id, x=10, y=20):
        res = self.client.post(
            f"/canvas/sessions/{session_id}/shapes",
            json={"type": "rectangle", "x": x, "y": y, "width": 100, "height": 50, "color": "#ff0000"},
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body["ok"], body)
        return body["state"]["shapes"][-1]

    def test_session_lifecycle(self):
        session_id = self.open_session()

        res = self.client.get(f"/canvas/sessions/{session_id}")
        self.assertEqual(res.status_code, 200)
        state = res.json()
        self.assertEqual(state["actorId"], "alice")
        self.assertEqual(state["shapes"], [])
        self.assertFalse(state["canUndo"])

        res = self.client.delete(f"/canvas/sessions/{session_id}")
        self.assertEqual(res.status_code, 200)

        res = self.client.get(f"/canvas/sessions/{session_id}")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["detail"]["code"], "SESSION_NOT_FOUND")

    def test_create_shape_visible_to_other_session(self):
        alice = self.open_session("alice")
        bob = self.open_session("bob")

        shape = self.create_rect(alice)
        self.assertEqual(shape["created_by"], "alice")

        state = self.client.get(f"/canvas/sessions/{bob}").json()
        self.assertEqual([s["id"] for s in state["shapes"]], [shape["id"]])

    def test_invalid_shape_returns_error(self):
        session_id = self.open_session()
        res = self.client.post(
            f"/canvas/sessions/{session_id}/shapes",
            json={"type": "circle", "x": 0, "y": 0, "radius": -5},
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"]["code"], "INVALID_SHAPE")
        self.assertEqual(body["error"]["field"], "radius")

    def test_update_then_undo_redo(self):
        session_id = self.open_session()
        shape = self.create_rect(session_id)

        res = self.client.patch(
            f"/canvas/sessions/{session_id}/shapes/{shape['id']}",
            json={"updates": {"x": 300}, "action": "move"},
        )
        body = res.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["state"]["shapes"][0]["x"], 300)

        body = self.client.post(f"/canvas/sessions/{session_id}:undo").json()
        self.assertEqual(body["state"]["shapes"][0]["x"], 10)
        self.assertTrue(body["state"]["canRedo"])

        body = self.client.post(f"/canvas/sessions/{session_id}:redo").json()
        self.assertEqual(body["state"]["shapes"][0]["x"], 300)

    def test_update_unknown_shape_reports_not_found(self):
        session_id = self.open_session()
        res = self.client.patch(
            f"/canvas/sessions/{session_id}/shapes/ghost",
            json={"updates": {"x": 1}},
        )
        body = res.json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"]["code"], "SHAPE_NOT_FOUND")

    def test_delete_and_undo(self):
        session_id = self.open_session()
        shape = self.create_rect(session_id)

        body = self.client.delete(f"/canvas/sessions/{session_id}/shapes/{shape['id']}").json()
        self.assertEqual(body["state"]["shapes"], [])

        body = self.client.post(f"/canvas/sessions/{session_id}:undo").json()
        self.assertEqual([s["id"] for s in body["state"]["shapes"]], [shape["id"]])

    def test_selection_duplicate_and_delete(self):
        session_id = self.open_session()
        first = self.create_rect(session_id, x=0, y=0)
        self.create_rect(session_id, x=500, y=500)

        body = self.client.put(
            f"/canvas/sessions/{session_id}/selection",
            json={"area": {"x1": 0, "y1": 0, "x2": 150, "y2": 150}},
        ).json()
        self.assertEqual(body["state"]["selectedIds"], [first["id"]])

        body = self.client.post(f"/canvas/sessions/{session_id}/selection:duplicate").json()
        self.assertEqual(len(body["state"]["shapes"]), 3)
        copy_id = body["state"]["selectedIds"][0]
        self.assertNotEqual(copy_id, first["id"])

        body = self.client.post(f"/canvas/sessions/{session_id}/selection:delete").json()
        ids = [s["id"] for s in body["state"]["shapes"]]
        self.assertEqual(len(ids), 2)
        self.assertNotIn(copy_id, ids)

    def test_align_selection(self):
        session_id = self.open_session()
        a = self.create_rect(session_id, x=10, y=0)
        b = self.create_rect(session_id, x=80, y=100)

        self.client.put(f"/canvas/sessions/{session_id}/selection", json={"shapeIds": [a["id"], b["id"]]})
        body = self.client.post(f"/canvas/sessions/{session_id}/selection:align", json={"mode": "left"}).json()
        xs = {s["id"]: s["x"] for s in body["state"]["shapes"]}
        self.assertEqual(xs[b["id"]], 10)

    def test_reorder_shape(self):
        session_id = self.open_session()
        a = self.create_rect(session_id)
        self.create_rect(session_id)

        body = self.client.post(
            f"/canvas/sessions/{session_id}/shapes/{a['id']}:reorder",
            json={"how": "front"},
        ).json()
        z = {s["id"]: s["z_index"] for s in body["state"]["shapes"]}
        self.assertEqual(z[a["id"]], 1)

    def test_nudge_moves_shape(self):
        session_id = self.open_session()
        shape = self.create_rect(session_id)

        body = self.client.post(
            f"/canvas/sessions/{session_id}:nudge",
            json={"shapeIds": [shape["id"]], "dx": 5, "dy": -5},
        ).json()
        moved = body["state"]["shapes"][0]
        self.assertEqual((moved["x"], moved["y"]), (15, 15))

    def test_update_with_null_field_is_rejected_and_session_survives(self):
        alice = self.open_session("alice")
        bob = self.open_session("bob")
        shape = self.create_rect(alice)

        res = self.client.patch(
            f"/canvas/sessions/{alice}/shapes/{shape['id']}",
            json={"updates": {"x": None}},
        )
        self.assertEqual(res.status_code, 422)

        for session_id in (alice, bob):
            res = self.client.get(f"/canvas/sessions/{session_id}")
            self.assertEqual(res.status_code, 200)
            self.assertEqual(res.json()["shapes"][0]["x"], 10)

    def test_update_with_negative_width_returns_invalid_shape(self):
        session_id = self.open_session()
        shape = self.create_rect(session_id)

        body = self.client.patch(
            f"/canvas/sessions/{session_id}/shapes/{shape['id']}",
            json={"updates": {"width": -50}, "action": "resize"},
        ).json()
        self.assertFalse(body["ok"])
        self.assertEqual(body["error"]["code"], "INVALID_SHAPE")
        self.assertEqual(body["error"]["field"], "width")

        state = self.client.get(f"/canvas/sessions/{session_id}").json()
        self.assertEqual(state["shapes"][0]["width"], 100)
        self.assertEqual(asyncio.run(self.persistence.fetch_shape(shape["id"]))["width"], 100)

    def test_nudge_burst_undoes_as_one_step(self):
        # One long-lived event loop, so the idle and flush timers really fire.
        with TestClient(app) as client:
            session_id = client.post("/canvas/sessions", json={"actorId": "alice"}).json()["sessionId"]
            body = client.post(
                f"/canvas/sessions/{session_id}/shapes",
                json={"type": "rectangle", "x": 10, "y": 20, "width": 100, "height": 50},
            ).json()
            shape_id = body["state"]["shapes"][0]["id"]

            for _ in range(3):
                client.post(f"/canvas/sessions/{session_id}:nudge", json={"shapeIds": [shape_id], "dx": 1, "dy": 0})
            time.sleep(0.5)
            self.assertEqual(asyncio.run(self.persistence.fetch_shape(shape_id))["x"], 13)

            body = client.post(f"/canvas/sessions/{session_id}:undo").json()
            self.assertTrue(body["ok"])
            self.assertEqual([(s["id"], s["x"]) for s in body["state"]["shapes"]], [(shape_id, 10)])
            self.assertTrue(body["state"]["canUndo"])

            body = client.post(f"/canvas/sessions/{session_id}:undo").json()
            self.assertEqual(body["state"]["shapes"], [])
            self.assertFalse(body["state"]["canUndo"])

    def test_locks_between_sessions(self):
        alice = self.open_session("alice")
        bob = self.open_session("bob")
        shape = self.create_rect(alice)

        res = self.client.post(f"/canvas/sessions/{alice}/shapes/{shape['id']}/lock").json()
        self.assertEqual(res, {"ok": True, "lockedBy": "alice"})

        res = self.client.post(f"/canvas/sessions/{bob}/shapes/{shape['id']}/lock").json()
        self.assertEqual(res, {"ok": False, "lockedBy": "alice"})

        res = self.client.delete(f"/canvas/sessions/{bob}/shapes/{shape['id']}/lock").json()
        self.assertFalse(res["ok"])

        res = self.client.delete(f"/canvas/sessions/{alice}/shapes/{shape['id']}/lock").json()
        self.assertEqual(res, {"ok": True, "lockedBy": None})


if __name__ == "__main__":
    unittest.main()
