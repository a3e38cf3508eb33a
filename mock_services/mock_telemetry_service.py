"""
mock_telemetry_service.py — Mock Implementation of the Telemetry Service (Server-Sent Events)

This module simulates a robot fleet and pushes its complete state to every
subscriber as `telemetry` events, like the real telemetry service.

Purpose:
    • Provide a live fleet stream for the client's telemetry component
    • Simulate movement, battery drain and robots going offline
    • Accept stop commands that take effect in the next frame

Endpoints:
    GET  /telemetry/snapshot          — current fleet (JSON)
    GET  /telemetry/stream            — text/event-stream of full fleet frames
    POST /telemetry/robots/{id}/stop  — stop command (202)
"""

import asyncio
import copy
import json
import logging
import math
import random
from datetime import datetime, timezone
from typing import List, Optional, Set

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

TICK_SECONDS = 2.0
EARTH_RADIUS_M = 6371000


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def format_frame(robots: List[dict]) -> str:
    """Encodes one fleet snapshot as a `telemetry` server-sent event."""
    return f"event: telemetry\ndata: {json.dumps(robots)}\n\n"


class FleetSimulator:
    """
    Random-walk fleet model.

    Each tick moves active robots, drains batteries (an empty robot goes
    OFFLINE), occasionally dispatches an IDLE robot and publishes the
    complete fleet to all subscribers.

    Args:
        size (int): Number of simulated robots.
        rng (random.Random, optional): Random source; pass a seeded one for reproducible runs.
    """

    def __init__(self, size: int = 5, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self._subscribers: Set[asyncio.Queue] = set()
        now = _now()
        self.robots: List[dict] = [
            {
                "id": f"sim-{index + 1}",
                "robotId": f"RB-SIM-{index + 1}",
                "status": "IDLE",
                "batteryPercent": 1 + self.rng.randrange(99),
                "location": {"lat": 35.772 + self.rng.random() * 0.01, "lng": -78.674 + self.rng.random() * 0.01},
                "speed": 0,
                "distanceTraveled": 0,
                "lastUpdate": now,
            }
            for index in range(size)
        ]

    def snapshot(self) -> List[dict]:
        return copy.deepcopy(self.robots)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=16)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)

    def publish(self):
        frame = self.snapshot()
        for queue in self._subscribers:
            if queue.full():
                # slow consumer: drop its oldest frame, every frame is a full snapshot anyway
                queue.get_nowait()
            queue.put_nowait(frame)

    def issue_stop(self, robot_id: str) -> bool:
        for robot in self.robots:
            if robot_id in (robot["id"], robot["robotId"]):
                robot["status"] = "OFFLINE"
                robot["speed"] = 0
                robot["lastUpdate"] = _now()
                logging.info(f"[TS] Robot {robot['robotId']} stopped.")
                self.publish()
                return True
        return False

    def tick(self):
        now = _now()
        for robot in self.robots:
            robot["lastUpdate"] = now
            if robot["status"] in ("OFFLINE", "MAINTENANCE"):
                robot["speed"] = 0
                continue

            scale = 0.0005 if robot["status"] in ("EN_ROUTE", "ASSIGNED") else 0.0001
            old = robot["location"]
            new = {
                "lat": old["lat"] + (self.rng.random() - 0.5) * scale,
                "lng": old["lng"] + (self.rng.random() - 0.5) * scale,
            }
            moved = distance_m(old["lat"], old["lng"], new["lat"], new["lng"])
            robot["location"] = new
            robot["distanceTraveled"] = round(robot["distanceTraveled"] + moved)
            robot["speed"] = round(moved / TICK_SECONDS * 3.6, 1)

            drain = 1 if robot["status"] == "EN_ROUTE" or self.rng.random() < 0.3 else 0
            robot["batteryPercent"] = max(0, robot["batteryPercent"] - drain)
            if robot["batteryPercent"] == 0:
                robot["status"] = "OFFLINE"

        if self.rng.random() < 0.3:
            idle = [robot for robot in self.robots if robot["status"] == "IDLE"]
            if idle:
                self.rng.choice(idle)["status"] = "EN_ROUTE"
        self.publish()

    async def run(self, tick_seconds: float = TICK_SECONDS):
        logging.info(f"[TS] Fleet simulation running ({len(self.robots)} robots, tick {tick_seconds}s).")
        while True:
            await asyncio.sleep(tick_seconds)
            self.tick()


def build_router(simulator: FleetSimulator) -> APIRouter:
    router = APIRouter(prefix="/telemetry")

    @router.get("/snapshot")
    def snapshot():
        return simulator.snapshot()

    @router.get("/stream")
    async def stream():
        queue = simulator.subscribe()

        async def frames():
            try:
                yield format_frame(simulator.snapshot())
                while True:
                    yield format_frame(await queue.get())
            finally:
                simulator.unsubscribe(queue)

        return StreamingResponse(frames(), media_type="text/event-stream",
                                 headers={"Cache-Control": "no-cache"})

    @router.post("/robots/{robot_id}/stop", status_code=202)
    def stop_robot(robot_id: str):
        if not simulator.issue_stop(robot_id):
            raise HTTPException(status_code=404, detail="Robot not found")
        return {"ok": True}

    return router
