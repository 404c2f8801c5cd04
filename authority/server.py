"""
FastAPI WebSocket Server (Race Authority)
Owns the race state, accepts tracker commands over WebSocket and broadcasts
the standings to every connected client.
"""
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Dict, Set, Optional, Any
import asyncio
import json
import logging
import os

import uvicorn

from shared import __version__
from shared.constants import Defaults, RaceRules
from shared.models import MessageType, RaceAction
from authority.race_state import RaceState

logger = logging.getLogger(__name__)


# Pydantic models for REST API endpoints
class RegisterRequest(BaseModel):
    name: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    race_status: str
    connections: int
    racers: int


class RaceAuthorityServer:
    """
    FastAPI server for the race authority.
    Handles tracker WebSocket connections and the results API.
    """

    def __init__(
        self,
        host: str = Defaults.AUTHORITY_HOST.value,
        port: int = Defaults.AUTHORITY_PORT.value,
        checkpoints_per_lap: int = RaceRules.CHECKPOINTS_PER_LAP.value,
        total_laps: int = RaceRules.TOTAL_LAPS.value,
        race: Optional[RaceState] = None
    ):
        """
        Initialize race authority server.

        Args:
            host: Server host address.
            port: Server port.
            checkpoints_per_lap: Checkpoints that complete a lap.
            total_laps: Laps needed to finish.
            race: Existing race state, mainly for tests.
        """
        self.host = host
        self.port = port

        self.app = FastAPI(
            title="Race Authority",
            description="Race state authority for checkpoint trackers",
            version=__version__
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self.race = race or RaceState(checkpoints_per_lap=checkpoints_per_lap, total_laps=total_laps)

        # WebSocket management
        self.active_connections: Set[WebSocket] = set()

        self._register_routes()

    def _register_routes(self):
        """Register all API routes."""
        self.app.add_api_websocket_route("/ws", self.websocket_endpoint)

        self.app.get("/health")(self.health_check)
        self.app.get("/api/results")(self.get_results)
        self.app.post("/api/register")(self.register_racer)

    def run(self):
        """Run the server (blocking)."""
        logger.info(f"[AUTHORITY] Starting server on {self.host}:{self.port}")
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info"
        )

    # WebSocket Handler
    async def websocket_endpoint(self, websocket: WebSocket):
        """
        WebSocket endpoint for trackers and displays.

        Args:
            websocket: WebSocket connection.
        """
        await websocket.accept()
        self.active_connections.add(websocket)
        client_id = id(websocket)

        logger.info(f"[AUTHORITY] Client {client_id} connected")

        try:
            await websocket.send_text(json.dumps(self.race.snapshot(MessageType.INIT)))

            while True:
                data = await websocket.receive_text()
                await self.handle_websocket_message(data)

        except WebSocketDisconnect:
            logger.info(f"[AUTHORITY] Client {client_id} disconnected")
        finally:
            self.active_connections.discard(websocket)

    async def handle_websocket_message(self, data: str):
        """
        Apply one tracker command and broadcast the result.

        Args:
            data: JSON message string.
        """
        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"[AUTHORITY] Invalid JSON message: {e}")
            return
        if not isinstance(message, dict):
            logger.warning(f"[AUTHORITY] Ignoring non-object message: {data}")
            return

        msg_type = message.get("type")

        if msg_type == MessageType.ACTION.value:
            try:
                action = RaceAction(message.get("payload"))
            except ValueError:
                logger.warning(f"[AUTHORITY] Unknown action: {message.get('payload')}")
                return
            self.race.apply_action(action)
            # Full state on action so every client resyncs
            await self.broadcast(self.race.snapshot(MessageType.INIT))
            return

        if msg_type == MessageType.LAP.value:
            changed = self.race.lap(str(message.get("racerId")))
        elif msg_type == MessageType.CHECKPOINT.value:
            changed = self.race.checkpoint(str(message.get("racerId")))
        elif msg_type == MessageType.DISQUALIFY.value:
            changed = self.race.disqualify(str(message.get("racerId")))
        elif msg_type == MessageType.REMOVE.value:
            changed = self.race.remove(str(message.get("name") or ""))
        elif msg_type == MessageType.REGISTER.value:
            changed = self.race.register(str(message.get("name") or "")) is not None
        else:
            logger.warning(f"[AUTHORITY] Unknown message type: {msg_type}")
            return

        if changed:
            await self.broadcast(self.race.snapshot(MessageType.UPDATE))

    async def broadcast(self, message: Dict[str, Any]):
        """
        Send a frame to all connected clients.

        Args:
            message: Frame to broadcast.
        """
        if self.active_connections:
            text = json.dumps(message)
            tasks = [
                ws.send_text(text)
                for ws in list(self.active_connections)
            ]
            await asyncio.gather(*tasks, return_exceptions=True)

    # REST API Endpoints
    async def health_check(self) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            race_status=self.race.status.value,
            connections=len(self.active_connections),
            racers=len(self.race.racers)
        )

    async def get_results(self):
        """Standings, disqualified racers last."""
        return {"racers": [racer.to_dict() for racer in self.race.sorted_results()]}

    async def register_racer(self, request: RegisterRequest):
        """Register a racer over HTTP."""
        if not request.name:
            raise HTTPException(status_code=400, detail="Name is required")

        racer = self.race.register(request.name)
        if racer is None:
            raise HTTPException(status_code=409, detail="Racer with this name already exists")

        await self.broadcast(self.race.snapshot(MessageType.UPDATE))
        return racer.to_dict()


def main():
    """Main entry point."""
    config = {
        "host": os.getenv("AUTHORITY_HOST", Defaults.AUTHORITY_HOST.value),
        "port": int(os.getenv("AUTHORITY_PORT", str(Defaults.AUTHORITY_PORT.value))),
        "checkpoints_per_lap": int(os.getenv("CHECKPOINTS_PER_LAP", str(RaceRules.CHECKPOINTS_PER_LAP.value))),
        "total_laps": int(os.getenv("TOTAL_LAPS", str(RaceRules.TOTAL_LAPS.value)))
    }

    server = RaceAuthorityServer(**config)
    server.run()


if __name__ == "__main__":
    main()
