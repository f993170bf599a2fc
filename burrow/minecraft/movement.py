from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from burrow.minecraft.digging import DigConfig
from burrow.minecraft.mining import try_mining_one_block
from burrow.minecraft.world import (
    UP,
    ActionFailed,
    Vec3,
    axis_direction_towards,
    find_item,
    format_block_position,
    format_bot_position,
    format_error,
    forward_vector,
    is_air,
    is_block_passable,
    left_vector,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from burrow.minecraft.world import Block, Position, WorldInterface

logger = logging.getLogger(__name__)

ARRIVAL_HORIZONTAL_THRESHOLD = 1.5
ARRIVAL_VERTICAL_THRESHOLD = 1.0
CONTROLS_TO_RELEASE = ("forward", "jump", "left", "right")
LOOK_AHEAD_DISTANCE = 5


@dataclass
class MovementConfig:
    walk_pulse: float = 0.1
    settle_delay: float = 0.05
    # the hop runs forward for jump_run_up, holds jump for jump_pulse, then keeps
    # forward for jump_carry so the avatar crosses the obstacle while airborne
    jump_run_up: float = 0.1
    jump_pulse: float = 0.1
    jump_carry: float = 0.2
    landing_timeout: float = 1.0
    landing_poll: float = 0.05
    strafe_pulse: float = 0.05
    strafe_attempts: int = 3
    centre_tolerance: float = 0.1
    centred_enough: float = 0.2
    jump_liftoff_delay: float = 0.1
    jump_airborne_delay: float = 0.2
    landing_delay: float = 0.3
    dig_down_settle: float = 0.2
    dig_timeout: float = 3.0
    min_progress: float = 0.3
    dig: DigConfig = field(default_factory=DigConfig)


class StepAction(Enum):
    WALK = "walk"
    JUMP = "jump"
    MINE = "mine"
    PILLAR = "pillar"
    DIG_DOWN = "dig_down"
    BLOCKED = "blocked"


class MoveStatus(Enum):
    ARRIVED = "arrived"
    STUCK = "stuck"
    ITERATION_LIMIT = "iteration_limit"


@dataclass(frozen=True)
class BlocksAhead:
    feet: Block | None
    head: Block | None
    above_head: Block | None

    @property
    def feet_clear(self) -> bool:
        return is_block_passable(self.feet)

    @property
    def head_clear(self) -> bool:
        return is_block_passable(self.head)

    @property
    def above_head_clear(self) -> bool:
        return is_block_passable(self.above_head)

    def describe(self) -> str:
        def name(block: Block | None) -> str:
            return block.name if block else "air"

        return (
            f"Block ahead of feet: {name(self.feet)}, ahead of head: {name(self.head)}, "
            f"above head: {name(self.above_head)}"
        )


@dataclass(frozen=True)
class StepSituation:
    feet_ahead_clear: bool
    head_ahead_clear: bool
    above_head_clear: bool
    horizontal_distance: float
    vertical_gap: float
    allow_dig_down: bool = True

    @property
    def needs_horizontal_travel(self) -> bool:
        return self.horizontal_distance > ARRIVAL_HORIZONTAL_THRESHOLD

    @property
    def target_above(self) -> bool:
        return self.vertical_gap > ARRIVAL_VERTICAL_THRESHOLD

    @property
    def target_below(self) -> bool:
        return self.vertical_gap < -ARRIVAL_VERTICAL_THRESHOLD


STEP_RULES: tuple[tuple[StepAction, Callable[[StepSituation], bool]], ...] = (
    (StepAction.WALK, lambda s: s.needs_horizontal_travel and s.feet_ahead_clear and s.head_ahead_clear),
    (
        StepAction.JUMP,
        lambda s: s.needs_horizontal_travel
        and not s.feet_ahead_clear
        and s.head_ahead_clear
        and s.above_head_clear,
    ),
    (StepAction.MINE, lambda s: s.needs_horizontal_travel),
    (StepAction.PILLAR, lambda s: s.target_above),
    (StepAction.DIG_DOWN, lambda s: s.target_below and s.allow_dig_down),
)


def decide_step(situation: StepSituation) -> StepAction:
    for action, applies in STEP_RULES:
        if applies(situation):
            return action
    return StepAction.BLOCKED


@dataclass
class StepOutcome:
    action: StepAction
    blocks_mined: int = 0
    moved_blocks_closer: float = 0.0
    pillared_up_blocks: int = 0
    error: str | None = None
    terminal: bool = False

    def made_progress(self, min_progress: float = 0.3) -> bool:
        return (
            self.blocks_mined > 0
            or self.moved_blocks_closer >= min_progress
            or self.pillared_up_blocks > 0
        )


@dataclass
class MoveOutcome:
    status: MoveStatus
    message: str
    iterations: int = 0
    blocks_mined: int = 0
    blocks_pillared: int = 0
    distance_traveled: float = 0.0
    distance_remaining: float = 0.0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "iterations": self.iterations,
            "blocks_mined": self.blocks_mined,
            "blocks_pillared": self.blocks_pillared,
            "distance_traveled": round(self.distance_traveled, 2),
            "distance_remaining": round(self.distance_remaining, 2),
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }


def did_arrive_at_target(point: Vec3, target: Vec3) -> bool:
    horizontal = point.horizontal_distance_to(target)
    vertical = abs(point.y - target.y)
    return horizontal <= ARRIVAL_HORIZONTAL_THRESHOLD and vertical <= ARRIVAL_VERTICAL_THRESHOLD


def get_blocks_ahead(world: WorldInterface, point: Vec3, forward: Vec3) -> BlocksAhead:
    return BlocksAhead(
        feet=world.block_at(point.offset(forward.x, 0, forward.z).floored()),
        head=world.block_at(point.offset(forward.x, 1, forward.z).floored()),
        above_head=world.block_at(point.offset(0, 2, 0).floored()),
    )


async def release_controls(world: WorldInterface) -> None:
    for control in CONTROLS_TO_RELEASE:
        await world.set_control_state(control, False)


async def face_direction(world: WorldInterface, direction: Vec3) -> None:
    point = world.get_position().vec
    await world.look_at(
        point.offset(direction.x * LOOK_AHEAD_DISTANCE, 0, direction.z * LOOK_AHEAD_DISTANCE)
    )


def _offset_across(position: Position, facing: Vec3) -> float:
    # 0.5 is the middle of the cell; % keeps negative coordinates in [0, 1)
    across = position.z if facing.x else position.x
    return across % 1.0 - 0.5


async def strafe_to_middle(world: WorldInterface, config: MovementConfig) -> bool:
    """Strafe sideways in short pulses until centred across the facing axis.

    Returns False when still off centre after the allowed attempts; callers
    carry on regardless.
    """
    facing = axis_direction_towards(Vec3(), forward_vector(world.get_position().yaw))
    for attempt in range(config.strafe_attempts):
        position = world.get_position()
        offset = _offset_across(position, facing)
        if abs(offset) <= config.centre_tolerance:
            return True

        left = left_vector(position.yaw)
        left_across = left.z if facing.x else left.x
        control = "left" if left_across * -offset > 0 else "right"
        before = position.vec
        await world.set_control_state(control, True)
        await asyncio.sleep(config.strafe_pulse)
        await world.set_control_state(control, False)

        after = world.get_position()
        remaining = _offset_across(after, facing)
        logger.debug(
            f"Strafe attempt {attempt + 1}: dir={control}, before={abs(offset):.3f}b from center, "
            f"moved={before.distance_to(after.vec):.3f}b, after={abs(remaining):.3f}b from center"
        )
        if abs(remaining) <= config.centred_enough:
            return True

    remaining = _offset_across(world.get_position(), facing)
    logger.warning(
        f"Failed to center after {config.strafe_attempts} attempts: still {abs(remaining):.2f}b from center"
    )
    return False


async def strafe_to_middle_both_axes(world: WorldInterface, config: MovementConfig) -> None:
    await face_direction(world, Vec3(0, 0, 1))
    await strafe_to_middle(world, config)
    await face_direction(world, Vec3(1, 0, 0))
    await strafe_to_middle(world, config)


async def wait_until_landed(world: WorldInterface, config: MovementConfig) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.landing_timeout
    while not world.get_position().on_ground:
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(config.landing_poll)
    return True


async def walk_forwards(world: WorldInterface, config: MovementConfig) -> None:
    await world.set_control_state("forward", True)
    await asyncio.sleep(config.walk_pulse)
    await world.set_control_state("forward", False)
    await asyncio.sleep(config.settle_delay)


async def jump_over_small_obstacle(world: WorldInterface, config: MovementConfig) -> None:
    await world.set_control_state("forward", True)
    await asyncio.sleep(config.jump_run_up)
    await world.set_control_state("jump", True)
    await asyncio.sleep(config.jump_pulse)
    await world.set_control_state("jump", False)
    await asyncio.sleep(config.jump_carry)
    await world.set_control_state("forward", False)
    await asyncio.sleep(config.settle_delay)
    await wait_until_landed(world, config)


async def mine_forwards(
    world: WorldInterface,
    ahead: BlocksAhead,
    allow_mining_of: Mapping[str, Sequence[str]],
    config: MovementConfig,
) -> StepOutcome:
    total = 0
    # head first, so clearing only the feet never leaves us wedged under a block
    for block in (ahead.head, ahead.feet):
        if is_block_passable(block):
            continue
        result = await try_mining_one_block(
            world, block, allow_mining_of, config.dig_timeout, dig_config=config.dig
        )
        total += result.blocks_mined
        if not result.success:
            return StepOutcome(StepAction.MINE, blocks_mined=total, error=result.error, terminal=True)
    return StepOutcome(StepAction.MINE, blocks_mined=total)


async def pillar_up_one_block(world: WorldInterface, config: MovementConfig) -> bool:
    await world.set_control_state("jump", True)
    await asyncio.sleep(config.jump_liftoff_delay)
    await asyncio.sleep(config.jump_airborne_delay)

    below = world.get_position().vec.offset(0, -1, 0).floored()
    if is_air(world.block_at(below)):
        reference = world.block_at(below.offset(0, -1, 0))
        if reference is not None and not is_block_passable(reference):
            try:
                await world.place_block(reference, UP)
            except ActionFailed as e:
                logger.warning(f"Failed to place pillar block: {format_error(e)}")
                await _wait_to_land(world, config)
                return False
            await _wait_to_land(world, config)
            return True

    await _wait_to_land(world, config)
    return False


async def _wait_to_land(world: WorldInterface, config: MovementConfig) -> None:
    await world.set_control_state("jump", False)
    await asyncio.sleep(config.landing_delay)


async def try_pillaring_up(
    world: WorldInterface,
    target: Vec3,
    allow_pillar_up_with: Sequence[str],
    allow_mining_of: Mapping[str, Sequence[str]],
    config: MovementConfig,
) -> StepOutcome:
    point = world.get_position().vec
    gap = target.y - point.y

    if not allow_pillar_up_with:
        return StepOutcome(
            StepAction.PILLAR,
            error=(
                f"Target is {gap:.1f} blocks above at {format_block_position(target)}. "
                f"Current: {format_block_position(point)}. Need blocks for pillaring. "
                f"Provide allow_pillar_up_with parameter (e.g., ['cobblestone', 'dirt'])."
            ),
            terminal=True,
        )

    if find_item(world.inventory_items(), allow_pillar_up_with) is None:
        return StepOutcome(
            StepAction.PILLAR,
            error=(
                f"Need blocks for pillaring: {', '.join(allow_pillar_up_with)}. "
                f"None found in inventory."
            ),
            terminal=True,
        )

    await strafe_to_middle_both_axes(world, config)
    point = world.get_position().vec
    blocks_mined = 0
    above_head = world.block_at(point.offset(0, 2, 0).floored())
    if not is_block_passable(above_head):
        result = await try_mining_one_block(
            world, above_head, allow_mining_of, config.dig_timeout, dig_config=config.dig
        )
        if not result.success:
            return StepOutcome(
                StepAction.PILLAR,
                error=f"Blocked above head by {above_head.name}, failed to clear: {result.error}",
                terminal=True,
            )
        blocks_mined += result.blocks_mined

    # mining may have swapped a tool into the hand
    pillar_block = find_item(world.inventory_items(), allow_pillar_up_with)
    if pillar_block is None:
        return StepOutcome(
            StepAction.PILLAR,
            blocks_mined=blocks_mined,
            error=f"Lost {', '.join(allow_pillar_up_with)} from inventory while clearing blocks above",
            terminal=True,
        )
    await world.equip(pillar_block)

    before_y = point.y
    placed = await pillar_up_one_block(world, config)
    after_y = world.get_position().y
    if placed:
        return StepOutcome(StepAction.PILLAR, blocks_mined=blocks_mined, pillared_up_blocks=1)
    return StepOutcome(
        StepAction.PILLAR,
        blocks_mined=blocks_mined,
        error=(
            f"Failed to pillar up (Y {before_y:.1f} -> {after_y:.1f}) with {pillar_block.name}. "
            f"Cell below may not have cleared during the jump."
        ),
    )


async def dig_directly_down(
    world: WorldInterface,
    allow_mining_of: Mapping[str, Sequence[str]],
    config: MovementConfig,
) -> StepOutcome:
    point = world.get_position().vec
    under = world.block_at(point.offset(0, -1, 0).floored())
    for depth in (2, 3):
        cell = point.offset(0, -depth, 0).floored()
        if is_block_passable(world.block_at(cell)):
            return StepOutcome(
                StepAction.DIG_DOWN,
                error=(
                    f"Not digging for caution: block at {format_block_position(cell)} is empty, "
                    f"would fall into a hole if we dug one down."
                ),
                terminal=True,
            )

    if is_block_passable(under):
        return StepOutcome(StepAction.DIG_DOWN, error="Nothing solid under the bot to dig down through.")

    await strafe_to_middle_both_axes(world, config)

    result = await try_mining_one_block(
        world, under, allow_mining_of, config.dig_timeout, dig_config=config.dig
    )
    if not result.success:
        return StepOutcome(
            StepAction.DIG_DOWN,
            error=f"Failed to dig block under bot: {result.error}",
            terminal=True,
        )
    await asyncio.sleep(config.dig_down_settle)
    return StepOutcome(StepAction.DIG_DOWN, blocks_mined=result.blocks_mined)


async def move_one_step(
    world: WorldInterface,
    target: Vec3,
    allow_pillar_up_with: Sequence[str],
    allow_mining_of: Mapping[str, Sequence[str]],
    config: MovementConfig,
    allow_dig_down: bool = True,
) -> StepOutcome:
    await face_direction(world, axis_direction_towards(world.get_position().vec, target))
    await strafe_to_middle(world, config)

    position = world.get_position()
    point = position.vec
    start_distance = point.distance_to(target)
    ahead = get_blocks_ahead(world, point, forward_vector(position.yaw))

    situation = StepSituation(
        feet_ahead_clear=ahead.feet_clear,
        head_ahead_clear=ahead.head_clear,
        above_head_clear=ahead.above_head_clear,
        horizontal_distance=point.horizontal_distance_to(target),
        vertical_gap=target.y - point.y,
        allow_dig_down=allow_dig_down,
    )
    action = decide_step(situation)
    logger.debug(f"Step from {format_bot_position(point)}: {action.value}. {ahead.describe()}")

    if action is StepAction.WALK:
        await walk_forwards(world, config)
        outcome = StepOutcome(action)
    elif action is StepAction.JUMP:
        await jump_over_small_obstacle(world, config)
        outcome = StepOutcome(action)
    elif action is StepAction.MINE:
        outcome = await mine_forwards(world, ahead, allow_mining_of, config)
    elif action is StepAction.PILLAR:
        outcome = await try_pillaring_up(world, target, allow_pillar_up_with, allow_mining_of, config)
    elif action is StepAction.DIG_DOWN:
        outcome = await dig_directly_down(world, allow_mining_of, config)
    else:
        return StepOutcome(
            action,
            error=(
                f"Stuck: Cannot walk, jump, mine, or pillar. Path may be blocked. "
                f"Bot at {format_bot_position(point)}, target {format_bot_position(target)}. "
                f"{ahead.describe()}"
            ),
        )

    new_distance = world.get_position().vec.distance_to(target)
    outcome.moved_blocks_closer = max(0.0, start_distance - new_distance)
    if outcome.error is None and not outcome.made_progress(config.min_progress):
        outcome.error = (
            f"{action.value.capitalize()} made only {outcome.moved_blocks_closer:.2f} blocks "
            f"progress. Bot at {format_bot_position(world.get_position().vec)}. {ahead.describe()}"
        )
    return outcome


async def move_to_target(
    world: WorldInterface,
    target: Vec3,
    allow_pillar_up_with: Sequence[str] = (),
    allow_mining_of: Mapping[str, Sequence[str]] | None = None,
    max_iterations: int = 10,
    config: MovementConfig | None = None,
    allow_dig_down: bool = True,
) -> MoveOutcome:
    config = config or MovementConfig()
    allow_mining_of = allow_mining_of or {}
    loop = asyncio.get_running_loop()
    start = world.get_position().vec
    started_at = loop.time()
    blocks_mined = 0
    blocks_pillared = 0
    iteration = 0

    def finish(status: MoveStatus, message: str) -> MoveOutcome:
        current = world.get_position().vec
        return MoveOutcome(
            status=status,
            message=message,
            iterations=iteration,
            blocks_mined=blocks_mined,
            blocks_pillared=blocks_pillared,
            distance_traveled=start.distance_to(current),
            distance_remaining=current.distance_to(target),
            elapsed_seconds=loop.time() - started_at,
        )

    def progress_summary(outcome: MoveOutcome) -> str:
        return (
            f"Made progress: traveled {outcome.distance_traveled:.1f} blocks, mined {blocks_mined} "
            f"blocks, pillared {blocks_pillared} blocks, {outcome.distance_remaining:.1f} blocks "
            f"remaining to target."
        )

    def arrived() -> MoveOutcome:
        outcome = finish(MoveStatus.ARRIVED, "")
        outcome.message = (
            f"Reached target {format_bot_position(target)} from {format_block_position(start)}. "
            f"Traveled {outcome.distance_traveled:.1f} blocks in {outcome.elapsed_seconds:.1f}s. "
            f"Mined {blocks_mined} blocks."
        )
        return outcome

    try:
        while iteration < max_iterations:
            if did_arrive_at_target(world.get_position().vec, target):
                return arrived()

            step = await move_one_step(
                world, target, allow_pillar_up_with, allow_mining_of, config, allow_dig_down
            )
            iteration += 1
            blocks_mined += step.blocks_mined
            blocks_pillared += step.pillared_up_blocks

            if step.terminal or not step.made_progress(config.min_progress):
                outcome = finish(MoveStatus.STUCK, "")
                cause = step.error or "Stuck at this iteration with no info from the last step."
                outcome.message = f"{cause} (after {iteration} iterations) {progress_summary(outcome)}"
                logger.info(f"move_to_target stuck: {cause}")
                return outcome

        if did_arrive_at_target(world.get_position().vec, target):
            return arrived()

        outcome = finish(MoveStatus.ITERATION_LIMIT, "")
        outcome.message = (
            f"Reached iteration limit ({max_iterations} iterations). {progress_summary(outcome)} "
            f"Call move-to again to continue."
        )
        return outcome
    finally:
        await release_controls(world)
