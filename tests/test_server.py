import unittest

from fastapi.testclient import TestClient

from burrow.minecraft.server import (
    AvatarSessionManager,
    CommandBusy,
    MoveToRequest,
    app,
)
from burrow.minecraft.sim import SimConfig


class TestServerEndpoints(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def start(self):
        response = self.client.post("/start", json={"floor_radius": 8})
        self.assertTrue(response.json()["success"])

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")
        self.assertFalse(response.json()["world_running"])

    def test_commands_need_a_started_world(self):
        response = self.client.post("/move-to", json={"x": 0, "y": 65, "z": 3})
        self.assertFalse(response.json()["success"])
        self.assertIn("not started", response.json()["error"])

    def test_start_and_read_state(self):
        self.start()

        state = self.client.get("/avatar-state").json()
        self.assertEqual(state["player"]["position"]["y"], 65.0)
        self.assertTrue(state["running"])
        self.assertTrue(self.client.get("/health").json()["world_running"])

    def test_move_to_nearby_target(self):
        self.start()

        response = self.client.post("/move-to", json={"x": 1.0, "y": 65, "z": 1.0})

        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], "arrived")
        self.assertEqual(body["iterations"], 0)

    def test_move_to_validates_body(self):
        self.start()
        response = self.client.post("/move-to", json={"x": 1.0, "y": 65, "z": 1.0, "max_iterations": 0})
        self.assertEqual(response.status_code, 422)

    def test_dig_block_with_policy(self):
        self.start()
        self.assertTrue(self.client.post("/blocks", json={"x": 0, "y": 65, "z": 1, "name": "dirt"}).json()["success"])

        refused = self.client.post(
            "/dig-block", json={"x": 0, "y": 65, "z": 1, "allow_mining_of": {"hand": ["sand"]}}
        ).json()
        self.assertFalse(refused["success"])
        self.assertEqual(refused["failure"], "policy")

        dug = self.client.post(
            "/dig-block", json={"x": 0, "y": 65, "z": 1, "allow_mining_of": {"hand": ["dirt"]}}
        ).json()
        self.assertTrue(dug["success"])
        self.assertEqual(dug["blocks_mined"], 1)

        inventory = self.client.get("/avatar-state").json()["player"]["inventory"]
        self.assertEqual([item["name"] for item in inventory], ["dirt"])

    def test_dig_block_on_air(self):
        self.start()
        body = self.client.post("/dig-block", json={"x": 0, "y": 70, "z": 0}).json()
        self.assertFalse(body["success"])
        self.assertIn("No block to dig", body["error"])

    def test_give_items(self):
        self.start()
        body = self.client.post("/give", json={"name": "cobblestone", "count": 5}).json()
        self.assertEqual(body["item"], {"name": "cobblestone", "count": 5, "slot": 0})

    def test_websocket_errors(self):
        with self.client.websocket_connect("/ws") as websocket:
            websocket.send_text("not json")
            self.assertEqual(websocket.receive_json()["error"], "Invalid JSON")

            websocket.send_json({"action": "get_state"})
            message = websocket.receive_json()
            self.assertEqual(message["type"], "error")
            self.assertEqual(message["error"], "World not started")


class TestCommandLock(unittest.IsolatedAsyncioTestCase):
    async def test_overlapping_commands_are_rejected(self):
        manager = AvatarSessionManager(SimConfig(floor_radius=4))
        await manager.start_world()
        try:
            async with manager._command_lock:
                self.assertTrue(manager.busy)
                with self.assertRaises(CommandBusy):
                    await manager.move_to(MoveToRequest(x=3, y=65, z=3))
        finally:
            await manager.stop_world()
            manager.close()

        self.assertFalse(manager.busy)


if __name__ == "__main__":
    unittest.main()
