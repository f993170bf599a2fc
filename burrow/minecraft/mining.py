from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from burrow.minecraft.digging import DigConfig, DigTimeout, dig_with_timeout
from burrow.minecraft.world import (
    ActionFailed,
    format_block_position,
    format_bot_position,
    format_error,
    held_item_name,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from burrow.minecraft.world import Block, Item, Vec3, WorldInterface

logger = logging.getLogger(__name__)

HAND = "hand"

SHOVEL_BLOCKS = frozenset({
    "dirt", "grass_block", "sand", "gravel", "clay", "soul_sand", "soul_soil",
    "snow", "snow_block", "podzol", "mycelium", "coarse_dirt", "rooted_dirt",
    "farmland", "dirt_path", "mud", "muddy_mangrove_roots",
})

PICKAXE_BLOCKS = frozenset({
    "stone", "cobblestone", "andesite", "diorite", "granite", "deepslate", "cobbled_deepslate",
    "netherrack", "end_stone", "sandstone", "red_sandstone", "basalt", "blackstone",
    "obsidian", "crying_obsidian", "ancient_debris", "nether_bricks", "red_nether_bricks",
    "prismarine", "prismarine_bricks", "dark_prismarine", "terracotta", "coal_ore",
    "iron_ore", "gold_ore", "diamond_ore", "emerald_ore", "lapis_ore", "redstone_ore",
    "nether_gold_ore", "nether_quartz_ore", "copper_ore", "deepslate_coal_ore",
    "deepslate_iron_ore", "deepslate_gold_ore", "deepslate_diamond_ore", "deepslate_emerald_ore",
    "deepslate_lapis_ore", "deepslate_redstone_ore", "deepslate_copper_ore",
    "bricks", "stone_bricks", "mossy_stone_bricks", "cracked_stone_bricks",
    "ice", "packed_ice", "blue_ice",
})

AXE_BLOCKS = frozenset({
    "oak_log", "spruce_log", "birch_log", "jungle_log", "acacia_log", "dark_oak_log",
    "mangrove_log", "cherry_log", "oak_wood", "spruce_wood", "birch_wood", "jungle_wood",
    "acacia_wood", "dark_oak_wood", "mangrove_wood", "cherry_wood",
    "oak_planks", "spruce_planks", "birch_planks", "jungle_planks", "acacia_planks",
    "dark_oak_planks", "mangrove_planks", "cherry_planks", "crafting_table", "bookshelf",
    "chest", "barrel", "ladder",
})

# worst to best
TOOL_TIERS = ("wooden", "stone", "iron", "golden", "diamond", "netherite")


class MiningFailure(Enum):
    MISSING_RESOURCE = "missing_resource"
    POLICY = "policy"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"


@dataclass
class MiningResult:
    success: bool
    blocks_mined: int = 0
    error: str | None = None
    failure: MiningFailure | None = None

    @classmethod
    def failed(cls, failure: MiningFailure, error: str) -> MiningResult:
        return cls(success=False, blocks_mined=0, error=error, failure=failure)


def tool_type_for_block(block_name: str) -> str | None:
    if block_name in SHOVEL_BLOCKS:
        return "shovel"
    if block_name in PICKAXE_BLOCKS:
        return "pickaxe"
    if block_name in AXE_BLOCKS:
        return "axe"
    return None


def tool_tier(item_name: str) -> int:
    for index, tier in enumerate(TOOL_TIERS):
        if item_name.startswith(f"{tier}_"):
            return index
    return -1


def find_best_tool_for_block(items: Sequence[Item], block_name: str) -> Item | None:
    tool_type = tool_type_for_block(block_name)
    if tool_type is None:
        return None
    matching = [item for item in items if item.name.endswith(f"_{tool_type}")]
    if not matching:
        return None
    return max(matching, key=lambda item: tool_tier(item.name))


def _is_diagonal(bot_point: Vec3, block_point: Vec3) -> bool:
    dx = abs(math.floor(bot_point.x) - math.floor(block_point.x))
    dz = abs(math.floor(bot_point.z) - math.floor(block_point.z))
    return dx > 0 and dz > 0


async def try_mining_one_block(
    world: WorldInterface,
    block: Block,
    allow_mining_of: Mapping[str, Sequence[str]],
    dig_timeout: float = 3.0,
    allow_diagonal: bool = False,
    dig_config: DigConfig | None = None,
) -> MiningResult:
    bot_point = world.get_position().vec
    block_point = block.position
    distance = bot_point.distance_to(block_point)
    where = format_block_position(block_point)

    await world.set_control_state("forward", False)

    if not allow_diagonal and _is_diagonal(bot_point, block_point):
        return MiningResult.failed(
            MiningFailure.UNREACHABLE,
            f"Block {block.name} at {where} is diagonal in XZ plane from bot at "
            f"{format_bot_position(bot_point)}. Only mining blocks that are axis-aligned in XZ "
            f"(forward/back/left/right, up/down is OK).",
        )

    tool: Item | str | None = None
    for tool_name, block_names in allow_mining_of.items():
        if block.name not in block_names:
            continue
        if tool_name == HAND:
            tool = HAND
            break
        tool = next((item for item in world.inventory_items() if item.name == tool_name), None)
        if tool is None:
            return MiningResult.failed(
                MiningFailure.MISSING_RESOURCE,
                f"Tool {tool_name} needed to mine {block.name} at {where} but not found in "
                f"inventory. Distance: {distance:.1f} blocks.",
            )
        break

    if tool is None:
        if allow_mining_of:
            return MiningResult.failed(
                MiningFailure.POLICY,
                f"Block {block.name} at {where} missing from allow_mining_of input parameter, "
                f"add it if you want to mine it. Holding: {held_item_name(world)}. "
                f"Distance: {distance:.1f} blocks.",
            )
        tool = find_best_tool_for_block(world.inventory_items(), block.name) or HAND

    if tool == HAND:
        if world.held_item() is not None:
            await world.unequip()
    else:
        await world.equip(tool)

    await world.look_at(block_point.center(), force=True)

    if not world.can_see_block(block):
        return MiningResult.failed(
            MiningFailure.UNREACHABLE,
            f"No clear line of sight to {block.name} at {where} from bot at "
            f"{format_bot_position(bot_point)}. Distance: {distance:.1f} blocks. "
            f"Maybe dig the blocks in between first.",
        )

    if not world.can_dig_block(block):
        return MiningResult.failed(
            MiningFailure.UNREACHABLE,
            f"Cannot dig {block.name} at {where}. Holding: {held_item_name(world)}. "
            f"Distance: {distance:.1f} blocks. Block might be out of reach or require different tool",
        )

    try:
        await dig_with_timeout(world, block, dig_timeout, dig_config)
    except (DigTimeout, ActionFailed) as e:
        world.stop_digging()
        failure = MiningFailure.TIMEOUT if isinstance(e, DigTimeout) else MiningFailure.UNREACHABLE
        logger.info(f"Mining {block.name} at {where} failed: {format_error(e)}")
        return MiningResult.failed(
            failure,
            f"Failed to mine {block.name} at {where}. Holding: {held_item_name(world)}. "
            f"Distance: {distance:.1f} blocks. Error: {format_error(e)}",
        )

    return MiningResult(success=True, blocks_mined=1)
