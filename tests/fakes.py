from __future__ import annotations

import asyncio
import math

from burrow.minecraft.digging import DigConfig
from burrow.minecraft.movement import MovementConfig
from burrow.minecraft.world import (
    ActionFailed,
    Block,
    Item,
    Position,
    Vec3,
    forward_vector,
    is_block_passable,
    yaw_pitch_towards,
)

FAST_DIG = DigConfig(poll_interval=0.01, start_grace=0.05, completion_debounce=0.03)
FAST_MOVES = MovementConfig(
    walk_pulse=0.0,
    settle_delay=0.0,
    jump_run_up=0.0,
    jump_pulse=0.0,
    jump_carry=0.0,
    landing_poll=0.0,
    strafe_pulse=0.0,
    jump_liftoff_delay=0.0,
    jump_airborne_delay=0.0,
    landing_delay=0.0,
    dig_down_settle=0.0,
    dig_timeout=1.0,
    dig=FAST_DIG,
)


class FakeWorld:
    """Block-stepped world: releasing forward moves one block, a jump lifts one block."""

    def __init__(self, position: Position | None = None, ground_y: int = 64, floor_radius: int = 8) -> None:
        self.position = position or Position(x=0.5, y=ground_y + 1.0, z=0.5)
        self.blocks: dict[tuple[int, int, int], str] = {}
        for x in range(-floor_radius, floor_radius + 1):
            for z in range(-floor_radius, floor_radius + 1):
                self.blocks[(x, ground_y, z)] = "stone"
        self.items: list[Item] = []
        self.held: Item | None = None
        self.controls: dict[str, bool] = {}
        self.control_history: list[tuple[str, bool]] = []
        self.digging: Block | None = None
        self.dig_duration = 0.0
        self.dig_script: list[tuple[float, bool]] | None = None
        self.dig_error: Exception | None = None
        self.dug: list[Block] = []
        self.placed: list[tuple[Block, Vec3]] = []
        self.can_see = True
        self.can_dig = True
        self.frozen = False
        self.fail_on_forward: Exception | None = None
        self.stop_digging_calls = 0
        self.unequip_calls = 0

    def set_block(self, x: int, y: int, z: int, name: str) -> None:
        self.blocks[(x, y, z)] = name

    def give(self, name: str, count: int = 1) -> Item:
        item = Item(name=name, count=count, slot=len(self.items))
        self.items.append(item)
        return item

    def engaged(self) -> list[str]:
        return [name for name, state in self.controls.items() if state]

    def get_position(self) -> Position:
        return self.position

    def block_at(self, point: Vec3) -> Block | None:
        cell = point.floored()
        return Block(name=self.blocks.get(cell.key(), "air"), position=cell)

    def inventory_items(self) -> list[Item]:
        return [item for item in self.items if item.count > 0]

    def held_item(self) -> Item | None:
        return self.held

    def dig_target(self) -> Block | None:
        return self.digging

    def can_dig_block(self, block: Block) -> bool:
        return self.can_dig

    def can_see_block(self, block: Block) -> bool:
        return self.can_see

    async def set_control_state(self, control: str, state: bool) -> None:
        was_engaged = self.controls.get(control, False)
        self.controls[control] = state
        self.control_history.append((control, state))
        if control == "forward" and state and self.fail_on_forward:
            raise self.fail_on_forward
        if self.frozen:
            return

        if control == "jump" and state and self.position.on_ground:
            if self._cell_passable(self.position.x, self.position.y + 2, self.position.z):
                self.position.y += 1.0
                self.position.on_ground = False
        if control == "forward" and was_engaged and not state:
            forward = forward_vector(self.position.yaw)
            nx = self.position.x + forward.x
            nz = self.position.z + forward.z
            if self._cell_passable(nx, self.position.y, nz) and self._cell_passable(nx, self.position.y + 1, nz):
                self.position.x = nx
                self.position.z = nz
        if not self.controls.get("jump") and not self.controls.get("forward"):
            self._settle()

    def _cell_passable(self, x: float, y: float, z: float) -> bool:
        return is_block_passable(self.block_at(Vec3(x, y, z)))

    def _settle(self) -> None:
        for _ in range(16):
            if not self._cell_passable(self.position.x, self.position.y - 1, self.position.z):
                break
            self.position.y = math.floor(self.position.y) - 1.0
        self.position.on_ground = True

    async def equip(self, item: Item) -> None:
        self.held = item

    async def unequip(self) -> None:
        self.unequip_calls += 1
        self.held = None

    async def look_at(self, point: Vec3, force: bool = False) -> None:
        self.position.yaw, self.position.pitch = yaw_pitch_towards(self.position.vec, point)

    async def dig(self, block: Block) -> None:
        if self.dig_error:
            raise self.dig_error
        try:
            if self.dig_script is not None:
                for duration, digging in self.dig_script:
                    self.digging = block if digging else None
                    await asyncio.sleep(duration)
            else:
                self.digging = block
                await asyncio.sleep(self.dig_duration)
        finally:
            self.digging = None
        self.blocks.pop(block.position.key(), None)
        self.dug.append(block)
        if not self.frozen:
            self._settle()

    def stop_digging(self) -> None:
        self.stop_digging_calls += 1
        self.digging = None

    async def place_block(self, reference: Block, face: Vec3) -> None:
        if self.held is None or self.held.count <= 0:
            raise ActionFailed("nothing to place")
        target = reference.position.plus(face)
        self.blocks[target.key()] = self.held.name
        self.held.count -= 1
        self.placed.append((reference, face))
