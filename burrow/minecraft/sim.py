from __future__ import annotations

import asyncio
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from burrow.minecraft.mining import tool_tier, tool_type_for_block
from burrow.minecraft.world import (
    AIR_BLOCKS,
    ActionFailed,
    Block,
    Item,
    Position,
    Vec3,
    format_block_position,
    is_air,
    is_block_passable,
    yaw_pitch_towards,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

AVATAR_HEIGHT = 1.8
AVATAR_HALF_WIDTH = 0.3
EYE_HEIGHT = 1.62
CONTROLS = ("forward", "back", "left", "right", "jump", "sprint", "sneak")

BLOCK_HARDNESS = {
    "dirt": 0.5, "grass_block": 0.6, "sand": 0.5, "gravel": 0.6, "clay": 0.6,
    "snow_block": 0.2, "stone": 1.5, "cobblestone": 2.0, "andesite": 1.5, "diorite": 1.5,
    "granite": 1.5, "deepslate": 3.0, "sandstone": 0.8, "netherrack": 0.4,
    "coal_ore": 3.0, "iron_ore": 3.0, "gold_ore": 3.0, "diamond_ore": 3.0,
    "oak_log": 2.0, "oak_planks": 2.0, "crafting_table": 2.5, "obsidian": 50.0,
    "glass": 0.3, "oak_leaves": 0.2,
}
UNBREAKABLE_BLOCKS = frozenset({"bedrock", "barrier"})
NON_SOLID_BLOCKS = frozenset({"short_grass", "tall_grass", "dandelion", "poppy", "torch"})
BLOCK_DROPS = {"stone": "cobblestone", "grass_block": "dirt", "deepslate": "cobbled_deepslate"}
TOOL_SUFFIXES = ("_pickaxe", "_shovel", "_axe", "_sword", "_hoe")
BLOCK_CHANGE_HISTORY = 20

# indexed like TOOL_TIERS
TOOL_SPEEDS = (2.0, 4.0, 6.0, 12.0, 8.0, 9.0)


@dataclass
class SimConfig:
    tick_interval: float = 0.05
    walk_speed: float = 4.317
    sprint_multiplier: float = 1.3
    sneak_multiplier: float = 0.3
    jump_velocity: float = 9.5
    gravity: float = 32.0
    terminal_velocity: float = 78.4
    reach: float = 4.5
    dig_time_scale: float = 1.0
    floor_radius: int = 16
    ground_y: int = 64
    floor_block: str = "stone"
    void_y: float = -64.0


@dataclass
class WorldState:
    spawn_position: tuple[float, float, float] = (0.5, 65.0, 0.5)
    blocks: dict[tuple[int, int, int], str] = field(default_factory=dict)
    block_changes: deque[dict] = field(default_factory=lambda: deque(maxlen=BLOCK_CHANGE_HISTORY))
    ticks: int = 0


class SimulatedWorld:
    def __init__(self, config: SimConfig | None = None, state: WorldState | None = None) -> None:
        self._config = config or SimConfig()
        self._world = state or WorldState()
        x, y, z = self._world.spawn_position
        self._position = Position(x=x, y=y, z=z)
        self._velocity = Vec3()
        self._controls: set[str] = set()
        self._inventory: list[Item] = []
        self._held_slot: int | None = None
        self._digging: Block | None = None
        self._dig_abort: asyncio.Event | None = None
        self._event_handlers: dict[str, list[Callable]] = {}
        self._tick_task: asyncio.Task | None = None
        self._running = False
        self._last_tick_time: float | None = None

    @classmethod
    def flat(cls, config: SimConfig | None = None) -> SimulatedWorld:
        config = config or SimConfig()
        state = WorldState(spawn_position=(0.5, config.ground_y + 1.0, 0.5))
        world = cls(config, state)
        radius = config.floor_radius
        for x in range(-radius, radius + 1):
            for z in range(-radius, radius + 1):
                state.blocks[(x, config.ground_y, z)] = config.floor_block
        return world

    def on(self, event: str, handler: Callable) -> None:
        if event not in self._event_handlers:
            self._event_handlers[event] = []
        self._event_handlers[event].append(handler)

    async def _emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        if event in self._event_handlers:
            for handler in self._event_handlers[event]:
                try:
                    result = handler(*args, **kwargs)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(f"Error in event handler for {event}: {e}")

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._last_tick_time = asyncio.get_running_loop().time()
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info(f"Simulation started at {format_block_position(self._position.vec)}")

    async def stop(self) -> None:
        self._running = False
        if self._dig_abort:
            self._dig_abort.set()
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        self._controls.clear()
        logger.info("Simulation stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _tick_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.tick_interval)
                self._advance()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Simulation tick error: {e}")

    def _advance(self) -> None:
        # integrate up to "now" so control changes take effect at the exact time they are made
        if not self._running or self._last_tick_time is None:
            return
        now = asyncio.get_running_loop().time()
        elapsed = now - self._last_tick_time
        self._last_tick_time = now
        step = self._config.tick_interval
        while elapsed > 1e-9:
            dt = min(step, elapsed)
            self.tick(dt)
            elapsed -= dt

    def tick(self, dt: float | None = None) -> None:
        dt = self._config.tick_interval if dt is None else dt
        pos = self._position
        self._world.ticks += 1

        vx, vy, vz = self._velocity.x, self._velocity.y, self._velocity.z
        if pos.on_ground:
            vx, vz = self._control_velocity()

        nx = pos.x + vx * dt
        if not self._collides(nx, pos.y, pos.z):
            pos.x = nx
        nz = pos.z + vz * dt
        if not self._collides(pos.x, pos.y, nz):
            pos.z = nz

        if pos.on_ground and not self._collides(pos.x, pos.y - 0.05, pos.z):
            pos.on_ground = False
        if pos.on_ground and "jump" in self._controls:
            vy = self._config.jump_velocity
            pos.on_ground = False

        if pos.on_ground:
            vy = 0.0
        else:
            vy = max(vy - self._config.gravity * dt, -self._config.terminal_velocity)
            ny = pos.y + vy * dt
            if self._collides(pos.x, ny, pos.z):
                if vy < 0:
                    pos.y = math.floor(ny) + 1.0
                    pos.on_ground = True
                vy = 0.0
            else:
                pos.y = ny

        self._velocity = Vec3(vx, vy, vz)

        if pos.y < self._config.void_y:
            logger.warning("Avatar fell out of the world, respawning")
            pos.x, pos.y, pos.z = self._world.spawn_position
            pos.on_ground = False
            self._velocity = Vec3()

    def _control_velocity(self) -> tuple[float, float]:
        speed = self._config.walk_speed
        if "sprint" in self._controls:
            speed *= self._config.sprint_multiplier
        if "sneak" in self._controls:
            speed *= self._config.sneak_multiplier

        yaw_rad = math.radians(self._position.yaw)
        dx, dz = 0.0, 0.0
        if "forward" in self._controls:
            dx -= math.sin(yaw_rad) * speed
            dz += math.cos(yaw_rad) * speed
        if "back" in self._controls:
            dx += math.sin(yaw_rad) * speed
            dz -= math.cos(yaw_rad) * speed
        if "left" in self._controls:
            dx += math.cos(yaw_rad) * speed
            dz += math.sin(yaw_rad) * speed
        if "right" in self._controls:
            dx -= math.cos(yaw_rad) * speed
            dz -= math.sin(yaw_rad) * speed
        return dx, dz

    def _collides(self, x: float, y: float, z: float) -> bool:
        for bx in range(math.floor(x - AVATAR_HALF_WIDTH), math.floor(x + AVATAR_HALF_WIDTH) + 1):
            for bz in range(math.floor(z - AVATAR_HALF_WIDTH), math.floor(z + AVATAR_HALF_WIDTH) + 1):
                for by in range(math.floor(y), math.floor(y + AVATAR_HEIGHT - 1e-6) + 1):
                    if not is_block_passable(self.block_at(Vec3(bx, by, bz))):
                        return True
        return False

    def _occupied_cells(self) -> set[tuple[int, int, int]]:
        pos = self._position
        cells = set()
        for bx in range(math.floor(pos.x - AVATAR_HALF_WIDTH), math.floor(pos.x + AVATAR_HALF_WIDTH) + 1):
            for bz in range(math.floor(pos.z - AVATAR_HALF_WIDTH), math.floor(pos.z + AVATAR_HALF_WIDTH) + 1):
                for by in range(math.floor(pos.y), math.floor(pos.y + AVATAR_HEIGHT - 1e-6) + 1):
                    cells.add((bx, by, bz))
        return cells

    def get_position(self) -> Position:
        self._advance()
        return self._position

    def block_at(self, point: Vec3) -> Block | None:
        cell = point.floored()
        name = self._world.blocks.get(cell.key(), "air")
        return Block(
            name=name,
            position=cell,
            bounding_box="empty" if name in AIR_BLOCKS or name in NON_SOLID_BLOCKS else "block",
            diggable=name not in AIR_BLOCKS and name not in UNBREAKABLE_BLOCKS,
        )

    def set_block(self, point: Vec3, name: str) -> None:
        key = point.floored().key()
        previous = self._world.blocks.get(key, "air")
        if name in AIR_BLOCKS:
            self._world.blocks.pop(key, None)
        else:
            self._world.blocks[key] = name
        self._world.block_changes.append(
            {"x": key[0], "y": key[1], "z": key[2], "from": previous, "to": name}
        )

    def give(self, name: str, count: int = 1) -> Item:
        for item in self._inventory:
            if item.name == name:
                item.count += count
                return item
        item = Item(name=name, count=count, slot=self._next_free_slot())
        self._inventory.append(item)
        return item

    def _next_free_slot(self) -> int:
        used = {item.slot for item in self._inventory}
        slot = 0
        while slot in used:
            slot += 1
        return slot

    def inventory_items(self) -> list[Item]:
        return list(self._inventory)

    def held_item(self) -> Item | None:
        if self._held_slot is None:
            return None
        return next((item for item in self._inventory if item.slot == self._held_slot), None)

    def dig_target(self) -> Block | None:
        return self._digging

    def _eye(self) -> Vec3:
        return self._position.vec.offset(0, EYE_HEIGHT, 0)

    def can_dig_block(self, block: Block) -> bool:
        if not block.diggable or is_air(self.block_at(block.position)):
            return False
        return self._eye().distance_to(block.position.center()) <= self._config.reach

    def can_see_block(self, block: Block) -> bool:
        eye = self._eye()
        target = block.position.center()
        distance = eye.distance_to(target)
        steps = max(1, int(distance / 0.1))
        goal = block.position.floored().key()
        for i in range(1, steps):
            t = i / steps
            point = Vec3(
                eye.x + (target.x - eye.x) * t,
                eye.y + (target.y - eye.y) * t,
                eye.z + (target.z - eye.z) * t,
            )
            if point.key() == goal:
                return True
            if not is_block_passable(self.block_at(point)):
                return False
        return True

    def dig_time(self, block_name: str) -> float:
        hardness = BLOCK_HARDNESS.get(block_name, 1.0)
        held = self.held_item()
        tool_type = tool_type_for_block(block_name)
        if held and tool_type and held.name.endswith(f"_{tool_type}"):
            tier = tool_tier(held.name)
            speed = TOOL_SPEEDS[tier] if tier >= 0 else 1.0
            seconds = hardness * 1.5 / speed
        elif tool_type == "pickaxe":
            # no-harvest penalty
            seconds = hardness * 5.0
        else:
            seconds = hardness * 1.5
        return seconds * self._config.dig_time_scale

    async def set_control_state(self, control: str, state: bool) -> None:
        if control not in CONTROLS:
            raise ValueError(f"Unknown control: {control}")
        self._advance()
        if state:
            self._controls.add(control)
        else:
            self._controls.discard(control)

    def control_states(self) -> dict[str, bool]:
        return {control: control in self._controls for control in CONTROLS}

    async def equip(self, item: Item) -> None:
        if item not in self._inventory:
            raise ActionFailed(f"{item.name} is not in the inventory")
        self._held_slot = item.slot

    async def unequip(self) -> None:
        self._held_slot = None

    async def look(self, yaw: float, pitch: float) -> None:
        self._advance()
        self._position.yaw = yaw % 360
        self._position.pitch = max(-90, min(90, pitch))

    async def look_at(self, point: Vec3, force: bool = False) -> None:
        yaw, pitch = yaw_pitch_towards(self._eye(), point)
        await self.look(yaw, pitch)

    async def dig(self, block: Block) -> None:
        if self._digging is not None:
            raise ActionFailed(f"Already digging {self._digging.name}")
        current = self.block_at(block.position)
        if current is None or current.name != block.name or not current.diggable:
            raise ActionFailed(f"Cannot dig {block.name} at {format_block_position(block.position)}")

        duration = self.dig_time(block.name)
        self._digging = current
        self._dig_abort = asyncio.Event()
        try:
            try:
                await asyncio.wait_for(self._dig_abort.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
            else:
                raise ActionFailed("Digging aborted")
        finally:
            self._digging = None
            self._dig_abort = None

        self.set_block(block.position, "air")
        self.give(BLOCK_DROPS.get(block.name, block.name))
        logger.debug(f"Dug {block.name} at {format_block_position(block.position)} in {duration:.2f}s")
        await self._emit("block_update", block.position, "air")

    def stop_digging(self) -> None:
        if self._dig_abort is not None:
            self._dig_abort.set()

    async def place_block(self, reference: Block, face: Vec3) -> None:
        target = reference.position.plus(face).floored()
        held = self.held_item()
        if held is None or held.count <= 0:
            raise ActionFailed("Nothing held to place")
        if held.name.endswith(TOOL_SUFFIXES):
            raise ActionFailed(f"{held.name} is not a placeable block")
        if is_air(self.block_at(reference.position)):
            raise ActionFailed(f"No block to place against at {format_block_position(reference.position)}")
        if not is_air(self.block_at(target)):
            raise ActionFailed(f"Cell {format_block_position(target)} is occupied")
        self._advance()
        if target.key() in self._occupied_cells():
            raise ActionFailed(f"Avatar is in the way of {format_block_position(target)}")

        self.set_block(target, held.name)
        held.count -= 1
        if held.count == 0:
            self._inventory.remove(held)
            self._held_slot = None
        await self._emit("block_update", target, held.name)

    def get_state_dict(self) -> dict:
        pos = self._position
        held = self.held_item()
        return {
            "player": {
                "position": {
                    "x": pos.x,
                    "y": pos.y,
                    "z": pos.z,
                    "yaw": pos.yaw,
                    "pitch": pos.pitch,
                    "on_ground": pos.on_ground,
                },
                "held_item": held.name if held else None,
                "inventory": [
                    {"name": item.name, "count": item.count, "slot": item.slot}
                    for item in self._inventory
                ],
            },
            "world": {
                "spawn_position": self._world.spawn_position,
                "block_count": len(self._world.blocks),
                "recent_block_changes": list(self._world.block_changes),
                "ticks": self._world.ticks,
            },
            "digging": self._digging.name if self._digging else None,
            "controls": sorted(self._controls),
            "running": self._running,
        }
