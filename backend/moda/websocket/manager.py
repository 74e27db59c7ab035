# moda/websocket/manager.py
from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional, Set
import asyncio
import logging

from ..services.upload_tasks import QueueStateSnapshot

logger = logging.getLogger(__name__)

ALL_PROJECTS = "*"

class ConnectionManager:
    """
    Pushes upload queue snapshots to browser clients.

    Each client subscribes to a channel: "*" for every project, or a
    project id to see only that project's tasks.
    """

    def __init__(self):
        # channel -> open sockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, channel: str = ALL_PROJECTS):
        await websocket.accept()
        sockets = self.active_connections.setdefault(channel, set())
        sockets.add(websocket)
        logger.info(f"[WebSocket] Watching {channel}: {len(sockets)} client(s)")

    def disconnect(self, websocket: WebSocket, channel: str = ALL_PROJECTS):
        sockets = self.active_connections.get(channel)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            self.active_connections.pop(channel, None)
        logger.info(f"[WebSocket] Client left {channel}")

    async def send_to_channel(self, channel: str, message: dict):
        """Send one message to every socket on a channel, dropping dead ones"""
        dead: List[WebSocket] = []
        for websocket in list(self.active_connections.get(channel, ())):
            try:
                await websocket.send_json(message)
            except WebSocketDisconnect:
                logger.warning(f"[WebSocket] Client on {channel} went away mid-send")
                dead.append(websocket)
            except Exception as e:
                logger.error(f"[WebSocket] Send to {channel} failed: {e}")
                dead.append(websocket)

        for websocket in dead:
            self.disconnect(websocket, channel)

    async def broadcast_state(self, state: QueueStateSnapshot):
        for channel in list(self.active_connections):
            await self.send_to_channel(channel, queue_message(state, channel))

    def on_queue_change(self, state: QueueStateSnapshot):
        """
        UploadQueueManager subscriber. Queue callbacks are synchronous,
        so sending is scheduled on the running loop.
        """
        if not self.active_connections:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast_state(state))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel is not None:
            return len(self.active_connections.get(channel, ()))
        return sum(len(sockets) for sockets in self.active_connections.values())


def queue_message(state: QueueStateSnapshot, channel: str = ALL_PROJECTS) -> dict:
    """Queue snapshot as a JSON message, limited to one project unless channel is "*" """
    message = state.to_dict()
    if channel != ALL_PROJECTS:
        message["queue"] = [t for t in message["queue"] if t["destination"]["project_id"] == channel]
        current = message["current_upload"]
        if current and current["destination"]["project_id"] != channel:
            message["current_upload"] = None
        message["pending_count"] = sum(1 for t in message["queue"] if t["status"] == "queued")
        message["total_in_queue"] = len(message["queue"])
    message["type"] = "queue_state"
    message["channel"] = channel
    return message


connection_manager = ConnectionManager()
