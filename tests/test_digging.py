import asyncio
import unittest

from fakes import FakeWorld

from burrow.minecraft.digging import DigConfig, DigFailure, DigTimeout, dig_with_timeout
from burrow.minecraft.world import ActionFailed, Vec3

WATCHDOG = DigConfig(poll_interval=0.01, start_grace=0.05, completion_debounce=0.03)


class TestDigWithTimeout(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.world = FakeWorld()
        self.world.set_block(0, 65, 1, "stone")
        self.block = self.world.block_at(Vec3(0, 65, 1))

    def assertNoStrayTasks(self):
        others = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        self.assertEqual(others, [])

    async def test_fast_dig_succeeds(self):
        self.world.dig_duration = 0.02

        await dig_with_timeout(self.world, self.block, 1.0, WATCHDOG)

        self.assertNotIn((0, 65, 1), self.world.blocks)
        self.assertNoStrayTasks()

    async def test_never_started_uses_start_grace(self):
        self.world.dig_script = [(5.0, False)]

        with self.assertRaises(DigTimeout) as ctx:
            await dig_with_timeout(self.world, self.block, 10.0, WATCHDOG)

        self.assertEqual(ctx.exception.reason, DigFailure.NEVER_STARTED)
        self.assertLess(ctx.exception.elapsed, 1.0)
        self.assertIn("failed to start", str(ctx.exception))
        self.assertNoStrayTasks()

    async def test_still_digging_past_timeout_is_too_slow(self):
        self.world.dig_script = [(5.0, True)]
        self.world.held = self.world.give("wooden_shovel")

        with self.assertRaises(DigTimeout) as ctx:
            await dig_with_timeout(self.world, self.block, 0.1, WATCHDOG)

        self.assertEqual(ctx.exception.reason, DigFailure.TOO_SLOW)
        self.assertEqual(ctx.exception.block_name, "stone")
        self.assertEqual(ctx.exception.tool_name, "wooden_shovel")
        self.assertIn("very slow", str(ctx.exception))

    async def test_failure_wins_over_late_success(self):
        self.world.dig_script = [(0.3, True)]

        with self.assertRaises(DigTimeout):
            await dig_with_timeout(self.world, self.block, 0.1, WATCHDOG)

        # the break action was cancelled before it could finish
        self.assertEqual(self.world.blocks[(0, 65, 1)], "stone")
        self.assertNoStrayTasks()

    async def test_stopped_digging_within_debounce_times_out(self):
        self.world.dig_script = [(0.02, True), (5.0, False)]
        config = DigConfig(poll_interval=0.01, start_grace=0.05, completion_debounce=5.0)

        with self.assertRaises(DigTimeout) as ctx:
            await dig_with_timeout(self.world, self.block, 0.1, config)

        self.assertEqual(ctx.exception.reason, DigFailure.TIMED_OUT)
        self.assertEqual(ctx.exception.tool_name, "no tool")

    async def test_debounce_leaves_the_outcome_to_the_dig(self):
        self.world.dig_script = [(0.03, True), (0.25, False)]

        await dig_with_timeout(self.world, self.block, 0.15, WATCHDOG)

        self.assertNotIn((0, 65, 1), self.world.blocks)

    async def test_dig_errors_propagate(self):
        self.world.dig_error = ActionFailed("Digging aborted")

        with self.assertRaises(ActionFailed):
            await dig_with_timeout(self.world, self.block, 1.0, WATCHDOG)
        self.assertNoStrayTasks()


if __name__ == "__main__":
    unittest.main()
