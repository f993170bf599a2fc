from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

AIR_BLOCKS = frozenset({"air", "cave_air", "void_air"})
FLUID_BLOCKS = frozenset({"water", "lava"})


class ActionFailed(Exception):
    pass


@dataclass(frozen=True)
class Vec3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def offset(self, dx: float, dy: float, dz: float) -> Vec3:
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def plus(self, other: Vec3) -> Vec3:
        return self.offset(other.x, other.y, other.z)

    def floored(self) -> Vec3:
        return Vec3(math.floor(self.x), math.floor(self.y), math.floor(self.z))

    def center(self) -> Vec3:
        base = self.floored()
        return base.offset(0.5, 0.5, 0.5)

    def key(self) -> tuple[int, int, int]:
        return (math.floor(self.x), math.floor(self.y), math.floor(self.z))

    def distance_to(self, other: Vec3) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def horizontal_distance_to(self, other: Vec3) -> float:
        return math.sqrt((self.x - other.x) ** 2 + (self.z - other.z) ** 2)


UP = Vec3(0, 1, 0)


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0
    on_ground: bool = True

    @property
    def vec(self) -> Vec3:
        return Vec3(self.x, self.y, self.z)


@dataclass(frozen=True)
class Block:
    name: str
    position: Vec3
    bounding_box: str = "block"
    diggable: bool = True


@dataclass
class Item:
    name: str
    count: int = 1
    slot: int = 0


class WorldInterface(Protocol):
    def get_position(self) -> Position: ...

    def block_at(self, point: Vec3) -> Block | None: ...

    def inventory_items(self) -> list[Item]: ...

    def held_item(self) -> Item | None: ...

    def dig_target(self) -> Block | None: ...

    def can_dig_block(self, block: Block) -> bool: ...

    def can_see_block(self, block: Block) -> bool: ...

    async def set_control_state(self, control: str, state: bool) -> None: ...

    async def equip(self, item: Item) -> None: ...

    async def unequip(self) -> None: ...

    async def look_at(self, point: Vec3, force: bool = False) -> None: ...

    async def dig(self, block: Block) -> None: ...

    def stop_digging(self) -> None: ...

    async def place_block(self, reference: Block, face: Vec3) -> None: ...


def is_air(block: Block | None) -> bool:
    return block is None or block.name in AIR_BLOCKS


def is_block_passable(block: Block | None) -> bool:
    if is_air(block):
        return True
    if block.name in FLUID_BLOCKS:
        return True
    # flowers, tall grass and the like have no collision box
    return block.bounding_box == "empty"


def forward_vector(yaw: float) -> Vec3:
    yaw_rad = math.radians(yaw)
    # rounded so an axis-aligned yaw floors onto the neighbouring cell, not a float hair short of it
    return Vec3(round(-math.sin(yaw_rad), 9), 0.0, round(math.cos(yaw_rad), 9))


def left_vector(yaw: float) -> Vec3:
    yaw_rad = math.radians(yaw)
    return Vec3(round(math.cos(yaw_rad), 9), 0.0, round(math.sin(yaw_rad), 9))


def axis_direction_towards(origin: Vec3, point: Vec3) -> Vec3:
    dx = point.x - origin.x
    dz = point.z - origin.z
    if abs(dx) > abs(dz):
        return Vec3(1 if dx > 0 else -1, 0, 0)
    return Vec3(0, 0, 1 if dz > 0 else -1)


def yaw_pitch_towards(origin: Vec3, point: Vec3) -> tuple[float, float]:
    dx = point.x - origin.x
    dy = point.y - origin.y
    dz = point.z - origin.z
    yaw = math.degrees(math.atan2(-dx, dz))
    pitch = -math.degrees(math.atan2(dy, math.hypot(dx, dz)))
    return yaw, max(-90.0, min(90.0, pitch))


def find_item(items: Iterable[Item], names: Iterable[str]) -> Item | None:
    wanted = set(names)
    for item in items:
        if item.name in wanted and item.count > 0:
            return item
    return None


def format_bot_position(point: Vec3) -> str:
    return f"({point.x:.1f}, {point.y:.1f}, {point.z:.1f})"


def format_block_position(point: Vec3) -> str:
    x, y, z = point.key()
    return f"({x}, {y}, {z})"


def held_item_name(world: WorldInterface, empty: str = "nothing (empty hand)") -> str:
    item = world.held_item()
    return item.name if item else empty


def format_error(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__
