from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from burrow.minecraft.mining import try_mining_one_block
from burrow.minecraft.movement import MoveStatus, move_to_target
from burrow.minecraft.sim import SimConfig, SimulatedWorld
from burrow.minecraft.world import Vec3, format_block_position, format_error, is_air

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class MoveToRequest(BaseModel):
    x: float
    y: float
    z: float
    allow_pillar_up_with: list[str] = Field(default_factory=list)
    allow_mining_of: dict[str, list[str]] = Field(default_factory=dict)
    max_iterations: int = Field(default=10, ge=1)
    allow_dig_down: bool = True


class DigBlockRequest(BaseModel):
    x: int
    y: int
    z: int
    timeout_seconds: float = Field(default=3.0, gt=0)
    allow_mining_of: dict[str, list[str]] = Field(default_factory=dict)
    allow_diagonal: bool = True


class SetBlockRequest(BaseModel):
    x: int
    y: int
    z: int
    name: str


class GiveRequest(BaseModel):
    name: str
    count: int = Field(default=1, ge=1)


class StartRequest(BaseModel):
    floor_radius: int | None = Field(default=None, ge=1)
    ground_y: int | None = None


class CommandBusy(Exception):
    pass


class WorldNotStarted(Exception):
    pass


class AvatarSessionManager:
    def __init__(self, sim_config: SimConfig | None = None) -> None:
        self._sim_config = sim_config or SimConfig()
        self._world: SimulatedWorld | None = None
        self._clients: set[WebSocket] = set()
        self._streaming = False
        self._stream_task: asyncio.Task | None = None
        self._command_lock = asyncio.Lock()
        self._command_tasks: set[asyncio.Task] = set()

    @property
    def world(self) -> SimulatedWorld | None:
        return self._world

    @property
    def busy(self) -> bool:
        return self._command_lock.locked()

    def _require_world(self) -> SimulatedWorld:
        if not self._world or not self._world.running:
            raise WorldNotStarted("World not started")
        return self._world

    async def start_world(self, floor_radius: int | None = None, ground_y: int | None = None) -> SimulatedWorld:
        if self._world and self._world.running:
            return self._world

        config = replace(self._sim_config)
        if floor_radius is not None:
            config.floor_radius = floor_radius
        if ground_y is not None:
            config.ground_y = ground_y

        self._world = SimulatedWorld.flat(config)
        self._world.on("block_update", self._on_block_update)
        await self._world.start()
        return self._world

    async def stop_world(self) -> None:
        if self._world:
            await self._world.stop()
            await self._broadcast({"type": "event", "event": "stopped"})

    async def _on_block_update(self, point: Vec3, name: str) -> None:
        await self._broadcast({
            "type": "event",
            "event": "block_update",
            "position": {"x": int(point.x), "y": int(point.y), "z": int(point.z)},
            "block": name,
        })

    async def _run_command(self, name: str, command: Callable[[SimulatedWorld], Awaitable[dict]]) -> dict:
        world = self._require_world()
        # one high-level command at a time; overlapping requests are rejected
        if self._command_lock.locked():
            raise CommandBusy(f"Cannot run {name}: another command is in progress")
        async with self._command_lock:
            logger.info(f"Running {name}")
            return await command(world)

    async def move_to(self, request: MoveToRequest) -> dict:
        async def command(world: SimulatedWorld) -> dict:
            outcome = await move_to_target(
                world,
                Vec3(request.x, request.y, request.z),
                allow_pillar_up_with=request.allow_pillar_up_with,
                allow_mining_of=request.allow_mining_of,
                max_iterations=request.max_iterations,
                allow_dig_down=request.allow_dig_down,
            )
            logger.info(f"move_to finished: {outcome.status.value}")
            return {"success": outcome.status is MoveStatus.ARRIVED, **outcome.to_dict()}

        return await self._run_command("move_to", command)

    async def dig_block(self, request: DigBlockRequest) -> dict:
        async def command(world: SimulatedWorld) -> dict:
            block = world.block_at(Vec3(request.x, request.y, request.z))
            if is_air(block):
                return {
                    "success": False,
                    "blocks_mined": 0,
                    "error": f"No block to dig at {format_block_position(Vec3(request.x, request.y, request.z))}",
                    "failure": None,
                }
            result = await try_mining_one_block(
                world,
                block,
                request.allow_mining_of,
                request.timeout_seconds,
                allow_diagonal=request.allow_diagonal,
            )
            return {
                "success": result.success,
                "blocks_mined": result.blocks_mined,
                "error": result.error,
                "failure": result.failure.value if result.failure else None,
            }

        return await self._run_command("dig_block", command)

    def set_block(self, request: SetBlockRequest) -> None:
        self._require_world().set_block(Vec3(request.x, request.y, request.z), request.name)

    def give(self, request: GiveRequest) -> dict:
        item = self._require_world().give(request.name, request.count)
        return {"name": item.name, "count": item.count, "slot": item.slot}

    async def add_client(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Client connected. Total clients: {len(self._clients)}")

        if not self._streaming and len(self._clients) == 1:
            await self._start_streaming()

    def remove_client(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info(f"Client disconnected. Total clients: {len(self._clients)}")

        if self._streaming and len(self._clients) == 0:
            self._stop_streaming()

    async def _start_streaming(self) -> None:
        self._streaming = True
        self._stream_task = asyncio.create_task(self._stream_loop())
        logger.info("Started state streaming")

    def _stop_streaming(self) -> None:
        self._streaming = False
        if self._stream_task:
            self._stream_task.cancel()
            self._stream_task = None
        logger.info("Stopped state streaming")

    async def _stream_loop(self) -> None:
        while self._streaming and self._clients:
            try:
                if self._world and self._world.running:
                    state = self._world.get_state_dict()
                    state["busy"] = self.busy
                    await self._broadcast({"type": "state", "data": state})
                await asyncio.sleep(0.1)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Stream error: {e}")
                await asyncio.sleep(0.1)

    async def _broadcast(self, message: dict) -> None:
        if not self._clients:
            return

        message_str = json.dumps(message)
        disconnected = set()

        for client in self._clients:
            try:
                await client.send_text(message_str)
            except Exception:
                disconnected.add(client)

        for client in disconnected:
            self._clients.discard(client)

    async def handle_input(self, websocket: WebSocket, data: dict) -> None:
        action = data.get("action", "")

        try:
            if action == "start":
                await self.start_world(data.get("floor_radius"), data.get("ground_y"))
            elif action == "stop":
                await self.stop_world()
            elif action == "get_state":
                state = self._require_world().get_state_dict()
                state["busy"] = self.busy
                await websocket.send_text(json.dumps({"type": "state", "data": state}))
                return
            elif action in ("move_to", "dig_block"):
                # long-running; answer when done without blocking this socket's reader
                task = asyncio.create_task(self._run_ws_command(websocket, action, data))
                self._command_tasks.add(task)
                task.add_done_callback(self._command_tasks.discard)
                return
            else:
                await self._handle_control(action, data)

            await websocket.send_text(json.dumps({
                "type": "ack",
                "action": action,
                "success": True,
            }))
        except (ValidationError, CommandBusy, WorldNotStarted, ValueError) as e:
            await websocket.send_text(json.dumps({
                "type": "error",
                "action": action,
                "error": format_error(e),
            }))
        except Exception as e:
            logger.error(f"Input handling error: {e}")
            await websocket.send_text(json.dumps({
                "type": "error",
                "action": action,
                "error": format_error(e),
            }))

    async def _handle_control(self, action: str, data: dict) -> None:
        world = self._require_world()
        start = data.get("start", True)
        if action == "move_forward":
            await world.set_control_state("forward", start)
        elif action == "move_backward":
            await world.set_control_state("back", start)
        elif action == "move_left":
            await world.set_control_state("left", start)
        elif action == "move_right":
            await world.set_control_state("right", start)
        elif action in ("jump", "sneak", "sprint"):
            await world.set_control_state(action, start)
        elif action == "look":
            await world.look(data.get("yaw", 0), data.get("pitch", 0))
        elif action == "look_relative":
            position = world.get_position()
            await world.look(
                position.yaw + data.get("yaw_delta", 0),
                position.pitch + data.get("pitch_delta", 0),
            )
        elif action == "look_at":
            await world.look_at(Vec3(data["x"], data["y"], data["z"]))
        elif action == "set_block":
            self.set_block(SetBlockRequest(**data))
        elif action == "give":
            self.give(GiveRequest(**data))
        else:
            raise ValueError(f"Unknown action: {action}")

    async def _run_ws_command(self, websocket: WebSocket, action: str, data: dict) -> None:
        try:
            if action == "move_to":
                result = await self.move_to(MoveToRequest(**data))
            else:
                result = await self.dig_block(DigBlockRequest(**data))
            await websocket.send_text(json.dumps({"type": "result", "action": action, "data": result}))
        except Exception as e:
            if not isinstance(e, (ValidationError, CommandBusy, WorldNotStarted)):
                logger.error(f"{action} failed: {e}")
            try:
                await websocket.send_text(json.dumps({
                    "type": "error",
                    "action": action,
                    "error": format_error(e),
                }))
            except Exception:
                self._clients.discard(websocket)

    def close(self) -> None:
        self._stop_streaming()


session_manager: AvatarSessionManager | None = None
sim_defaults = SimConfig()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global session_manager
    session_manager = AvatarSessionManager(sim_defaults)
    logger.info("Avatar controller server initialized")
    yield
    if session_manager:
        await session_manager.stop_world()
        session_manager.close()
    logger.info("Avatar controller server shutdown")


app = FastAPI(
    title="Burrow Avatar Controller",
    description="Drive a sandbox avatar with walk, jump, mine and pillar steps",
    version="1.0.0",
    lifespan=lifespan,
)


async def _guarded(call: Callable[[], Awaitable[dict]]) -> dict:
    if not session_manager:
        return {"success": False, "error": "Server not initialized"}
    try:
        return await call()
    except (CommandBusy, WorldNotStarted) as e:
        return {"success": False, "error": format_error(e)}
    except Exception as e:
        logger.error(f"Command failed: {e}")
        return {"success": False, "error": format_error(e)}


@app.get("/health")
async def health() -> dict:
    world = session_manager.world if session_manager else None
    return {
        "status": "healthy",
        "world_running": world.running if world else False,
        "busy": session_manager.busy if session_manager else False,
    }


@app.get("/avatar-state")
async def avatar_state() -> dict:
    if not session_manager or not session_manager.world:
        return {"error": "World not started"}
    return session_manager.world.get_state_dict()


@app.post("/start")
async def start_world(request: StartRequest | None = None) -> dict:
    request = request or StartRequest()

    async def call() -> dict:
        world = await session_manager.start_world(request.floor_radius, request.ground_y)
        return {"success": True, "state": world.get_state_dict()}

    return await _guarded(call)


@app.post("/stop")
async def stop_world() -> dict:
    async def call() -> dict:
        await session_manager.stop_world()
        return {"success": True}

    return await _guarded(call)


@app.post("/blocks")
async def set_block(request: SetBlockRequest) -> dict:
    async def call() -> dict:
        session_manager.set_block(request)
        return {"success": True}

    return await _guarded(call)


@app.post("/give")
async def give(request: GiveRequest) -> dict:
    async def call() -> dict:
        return {"success": True, "item": session_manager.give(request)}

    return await _guarded(call)


@app.post("/move-to")
async def move_to(request: MoveToRequest) -> dict:
    return await _guarded(lambda: session_manager.move_to(request))


@app.post("/dig-block")
async def dig_block(request: DigBlockRequest) -> dict:
    return await _guarded(lambda: session_manager.dig_block(request))


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    if not session_manager:
        await websocket.close(code=1011, reason="Server not initialized")
        return

    await session_manager.add_client(websocket)

    try:
        while True:
            message = await websocket.receive_text()
            try:
                data = json.loads(message)
                await session_manager.handle_input(websocket, data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({
                    "type": "error",
                    "error": "Invalid JSON",
                }))
    except WebSocketDisconnect:
        session_manager.remove_client(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        session_manager.remove_client(websocket)


def main(argv: list[str] | None = None) -> None:
    import argparse

    global sim_defaults

    parser = argparse.ArgumentParser(description="Burrow Avatar Controller Server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host")
    parser.add_argument("--port", type=int, default=8766, help="Server port")
    parser.add_argument("--floor-radius", type=int, default=16, help="Half-width of the sandbox floor")
    parser.add_argument("--ground-y", type=int, default=64, help="Height of the sandbox floor layer")
    args = parser.parse_args(argv)

    sim_defaults = SimConfig(floor_radius=args.floor_radius, ground_y=args.ground_y)

    def signal_handler(sig, frame) -> None:
        logger.info("Shutting down...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Starting Burrow Avatar Controller on http://{args.host}:{args.port}")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
