import argparse
import asyncio
import json
import logging

from burrow.minecraft.movement import move_to_target
from burrow.minecraft.server import main as run_server
from burrow.minecraft.sim import SimConfig, SimulatedWorld
from burrow.minecraft.world import Vec3


async def run_demo(ground_y: int, distance: int) -> dict:
    world = SimulatedWorld.flat(SimConfig(ground_y=ground_y))
    feet_y = ground_y + 1

    # a raised dirt platform to hop onto, a two-high wall on it to mine through,
    # and a target above its far end that needs pillaring
    for z in range(2, distance + 1):
        world.set_block(Vec3(0, feet_y, z), "dirt")
    wall_z = 2 + (distance - 2) // 2
    for y in (feet_y + 1, feet_y + 2):
        world.set_block(Vec3(0, y, wall_z), "stone")
    world.give("stone_pickaxe")
    world.give("cobblestone", 16)

    await world.start()
    try:
        outcome = await move_to_target(
            world,
            Vec3(0.5, feet_y + 3, distance + 0.5),
            allow_pillar_up_with=["cobblestone", "dirt"],
            allow_mining_of={"stone_pickaxe": ["stone", "cobblestone"], "hand": ["dirt"]},
            max_iterations=60,
        )
    finally:
        await world.stop()
    return outcome.to_dict()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Burrow - step an avatar toward a target by walking, jumping, mining and pillaring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the avatar controller server on a flat sandbox
  python main.py server --port 8766 --floor-radius 32

  # Run a short walk/jump/mine/pillar course in the sandbox and print the outcome
  python main.py demo --distance 8
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    server_parser = subparsers.add_parser("server", help="Run the avatar controller server")
    server_parser.add_argument("--host", default="0.0.0.0", help="Web server bind host")
    server_parser.add_argument("--port", type=int, default=8766, help="Web server port")
    server_parser.add_argument("--floor-radius", type=int, default=16, help="Half-width of the sandbox floor")
    server_parser.add_argument("--ground-y", type=int, default=64, help="Height of the sandbox floor layer")

    demo_parser = subparsers.add_parser("demo", help="Run a scripted course in the sandbox")
    demo_parser.add_argument("--ground-y", type=int, default=64, help="Height of the sandbox floor layer")
    demo_parser.add_argument("--distance", type=int, default=8, help="How far along +Z to send the avatar")

    args = parser.parse_args()

    if args.command == "server":
        run_server([
            "--host", args.host,
            "--port", str(args.port),
            "--floor-radius", str(args.floor_radius),
            "--ground-y", str(args.ground_y),
        ])
    elif args.command == "demo":
        logging.basicConfig(level=logging.INFO)
        result = asyncio.run(run_demo(args.ground_y, args.distance))
        print(json.dumps(result, indent=2))
    else:
        parser.print_help()
        print("\nQuick start:")
        print("  1. Run the controller server: python main.py server")
        print("  2. POST /start, then POST /move-to with {\"x\": 0, \"y\": 65, \"z\": 6}")


if __name__ == "__main__":
    main()
