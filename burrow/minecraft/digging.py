from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from burrow.minecraft.world import held_item_name

if TYPE_CHECKING:
    from burrow.minecraft.world import Block, WorldInterface

logger = logging.getLogger(__name__)


class DigFailure(Enum):
    NEVER_STARTED = "never_started"
    TOO_SLOW = "too_slow"
    TIMED_OUT = "timed_out"


class DigTimeout(Exception):
    def __init__(
        self,
        message: str,
        reason: DigFailure,
        elapsed: float,
        block_name: str,
        tool_name: str,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.elapsed = elapsed
        self.block_name = block_name
        self.tool_name = tool_name


@dataclass
class DigConfig:
    poll_interval: float = 0.5
    start_grace: float = 3.0
    completion_debounce: float = 2.0


async def dig_with_timeout(
    world: WorldInterface,
    block: Block,
    timeout_seconds: float = 3.0,
    config: DigConfig | None = None,
) -> None:
    """Break ``block`` while a monitor task watches for stalled or slow digging.

    The monitor's verdict is latched in a future; once it holds a failure that
    failure is raised, even if the dig itself goes on to succeed.
    """
    config = config or DigConfig()
    loop = asyncio.get_running_loop()
    verdict: asyncio.Future[None] = loop.create_future()

    dig_task = asyncio.ensure_future(world.dig(block))
    monitor_task = asyncio.create_task(
        _monitor_dig(world, block, timeout_seconds, config, verdict, loop.time())
    )

    try:
        await asyncio.wait({dig_task, verdict}, return_when=asyncio.FIRST_COMPLETED)
        if verdict.done():
            dig_task.cancel()
            verdict.result()
        await dig_task
        if verdict.done():
            verdict.result()
    finally:
        monitor_task.cancel()
        if not dig_task.done():
            dig_task.cancel()
        # let a cancelled dig unwind before returning; its outcome was already consumed above
        await asyncio.gather(monitor_task, dig_task, return_exceptions=True)
        if not verdict.done():
            verdict.cancel()


async def _monitor_dig(
    world: WorldInterface,
    block: Block,
    timeout_seconds: float,
    config: DigConfig,
    verdict: asyncio.Future[None],
    started_at: float,
) -> None:
    loop = asyncio.get_running_loop()
    was_digging = False
    last_seen_digging = started_at

    def fail(reason: DigFailure, message: str, elapsed: float) -> None:
        if verdict.done():
            return
        logger.debug(f"Dig watchdog verdict for {block.name}: {reason.value} after {elapsed:.1f}s")
        verdict.set_exception(
            DigTimeout(message, reason, elapsed, block.name, held_item_name(world, "no tool"))
        )

    while not verdict.done():
        await asyncio.sleep(config.poll_interval)
        now = loop.time()
        elapsed = now - started_at
        is_digging = world.dig_target() is not None

        if is_digging:
            was_digging = True
            last_seen_digging = now

        if not was_digging and elapsed > config.start_grace:
            fail(
                DigFailure.NEVER_STARTED,
                f"Dig failed to start after {config.start_grace:g}s. "
                f"Bot may be stuck or block unreachable.",
                elapsed,
            )
            return

        if was_digging and is_digging and elapsed > timeout_seconds:
            tool = held_item_name(world, "no tool")
            fail(
                DigFailure.TOO_SLOW,
                f"Digging is very slow ({elapsed:.1f}s). Block: {block.name}. Using: {tool}. "
                f"Wrong tool? Or maybe your character isn't reaching the block?",
                elapsed,
            )
            return

        if was_digging and not is_digging and now - last_seen_digging > config.completion_debounce:
            # dig most likely finished; its own completion resolves the call
            return

        if elapsed > timeout_seconds:
            tool = held_item_name(world, "no tool")
            fail(
                DigFailure.TIMED_OUT,
                f"Dig timeout after {timeout_seconds:g}s. Block: {block.name}. Using: {tool}. "
                f"May need better tools or block is too hard.",
                elapsed,
            )
            return
