import asyncio
import unittest

from burrow.minecraft.sim import SimConfig, SimulatedWorld
from burrow.minecraft.world import UP, ActionFailed, Vec3


def flat_world(**overrides):
    return SimulatedWorld.flat(SimConfig(floor_radius=6, **overrides))


class TestPhysics(unittest.IsolatedAsyncioTestCase):
    async def test_standing_still_on_the_floor(self):
        world = flat_world()
        for _ in range(20):
            world.tick()

        position = world.get_position()
        self.assertEqual((position.x, position.y, position.z), (0.5, 65.0, 0.5))
        self.assertTrue(position.on_ground)

    async def test_walking_forward_follows_yaw(self):
        world = flat_world()
        await world.look(0, 0)
        await world.set_control_state("forward", True)

        for _ in range(10):
            world.tick(0.05)

        position = world.get_position()
        self.assertAlmostEqual(position.z, 0.5 + 4.317 * 0.5, places=6)
        self.assertAlmostEqual(position.x, 0.5, places=6)

    async def test_yaw_90_walks_toward_negative_x(self):
        world = flat_world()
        await world.look(90, 0)
        await world.set_control_state("forward", True)

        for _ in range(5):
            world.tick(0.05)

        self.assertLess(world.get_position().x, 0.0)

    async def test_walls_stop_the_avatar(self):
        world = flat_world()
        world.set_block(Vec3(0, 65, 2), "stone")
        world.set_block(Vec3(0, 66, 2), "stone")
        await world.set_control_state("forward", True)

        for _ in range(20):
            world.tick(0.05)

        self.assertLessEqual(world.get_position().z, 1.7)
        self.assertGreater(world.get_position().z, 1.5)

    async def test_jump_lands_back_on_the_floor(self):
        world = flat_world()
        await world.set_control_state("jump", True)
        world.tick(0.05)
        await world.set_control_state("jump", False)

        peak = world.get_position().y
        for _ in range(40):
            world.tick(0.05)
            peak = max(peak, world.get_position().y)

        self.assertGreater(peak, 66.0)
        self.assertEqual(world.get_position().y, 65.0)
        self.assertTrue(world.get_position().on_ground)

    async def test_falls_into_a_hole(self):
        world = flat_world()
        world.set_block(Vec3(0, 64, 0), "air")
        world.set_block(Vec3(0, 62, 0), "stone")

        for _ in range(40):
            world.tick(0.05)

        self.assertEqual(world.get_position().y, 63.0)

    async def test_unknown_control_is_rejected(self):
        world = flat_world()
        with self.assertRaises(ValueError):
            await world.set_control_state("fly", True)


class TestBlocks(unittest.IsolatedAsyncioTestCase):
    async def test_block_lookup_and_passability(self):
        world = flat_world()
        world.set_block(Vec3(1, 65, 0), "short_grass")

        self.assertEqual(world.block_at(Vec3(0.7, 64.2, 0.1)).name, "stone")
        self.assertEqual(world.block_at(Vec3(0, 70, 0)).name, "air")
        self.assertEqual(world.block_at(Vec3(1, 65, 0)).bounding_box, "empty")
        self.assertFalse(world.block_at(Vec3(0, 70, 0)).diggable)

    async def test_dig_time_depends_on_tool(self):
        world = flat_world()
        self.assertAlmostEqual(world.dig_time("stone"), 7.5)
        self.assertAlmostEqual(world.dig_time("dirt"), 0.75)

        await world.equip(world.give("wooden_pickaxe"))
        self.assertAlmostEqual(world.dig_time("stone"), 1.125)

    async def test_dig_removes_block_and_collects_drop(self):
        world = flat_world(dig_time_scale=0.01)
        world.set_block(Vec3(0, 65, 1), "stone")
        block = world.block_at(Vec3(0, 65, 1))

        await world.dig(block)

        self.assertEqual(world.block_at(Vec3(0, 65, 1)).name, "air")
        self.assertEqual([item.name for item in world.inventory_items()], ["cobblestone"])
        self.assertIsNone(world.dig_target())

    async def test_stop_digging_aborts(self):
        world = flat_world()
        world.set_block(Vec3(0, 65, 1), "obsidian")
        block = world.block_at(Vec3(0, 65, 1))

        dig = asyncio.create_task(world.dig(block))
        await asyncio.sleep(0.01)
        self.assertEqual(world.dig_target().name, "obsidian")
        world.stop_digging()

        with self.assertRaises(ActionFailed):
            await dig
        self.assertEqual(world.block_at(Vec3(0, 65, 1)).name, "obsidian")

    async def test_bedrock_cannot_be_dug(self):
        world = flat_world()
        world.set_block(Vec3(0, 65, 1), "bedrock")

        with self.assertRaises(ActionFailed):
            await world.dig(world.block_at(Vec3(0, 65, 1)))

    async def test_place_block_next_to_avatar(self):
        world = flat_world()
        item = world.give("cobblestone", 2)
        await world.equip(item)

        await world.place_block(world.block_at(Vec3(0, 64, 2)), UP)

        self.assertEqual(world.block_at(Vec3(0, 65, 2)).name, "cobblestone")
        self.assertEqual(item.count, 1)

    async def test_place_block_refused_inside_avatar(self):
        world = flat_world()
        await world.equip(world.give("cobblestone", 2))

        with self.assertRaises(ActionFailed):
            await world.place_block(world.block_at(Vec3(0, 64, 0)), UP)

    async def test_block_change_history_keeps_the_latest(self):
        world = flat_world()
        for z in range(25):
            world.set_block(Vec3(0, 70, z), "dirt")

        changes = world.get_state_dict()["world"]["recent_block_changes"]

        self.assertEqual(len(changes), 20)
        self.assertEqual(changes[0]["z"], 5)
        self.assertEqual(changes[-1], {"x": 0, "y": 70, "z": 24, "from": "air", "to": "dirt"})

    async def test_line_of_sight_and_reach(self):
        world = flat_world()
        world.set_block(Vec3(0, 66, 1), "stone")
        world.set_block(Vec3(0, 66, 3), "dirt")
        far = world.block_at(Vec3(0, 66, 3))

        self.assertFalse(world.can_see_block(far))
        self.assertTrue(world.can_see_block(world.block_at(Vec3(0, 66, 1))))
        self.assertTrue(world.can_dig_block(far))

        world.set_block(Vec3(0, 66, 6), "dirt")
        self.assertFalse(world.can_dig_block(world.block_at(Vec3(0, 66, 6))))


class TestLifecycle(unittest.IsolatedAsyncioTestCase):
    async def test_real_time_walk(self):
        world = flat_world()
        await world.start()
        try:
            await world.set_control_state("forward", True)
            await asyncio.sleep(0.2)
            await world.set_control_state("forward", False)
            z = world.get_position().z
        finally:
            await world.stop()

        self.assertGreater(z, 1.0)
        self.assertFalse(world.running)
        self.assertEqual(world.get_state_dict()["controls"], [])


if __name__ == "__main__":
    unittest.main()
