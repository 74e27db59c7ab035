# moda/api/websocket.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Optional
import logging
from ..websocket.manager import connection_manager, queue_message, ALL_PROJECTS

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket("/uploads")
async def websocket_uploads(websocket: WebSocket, project_id: Optional[str] = None):
    """
    WebSocket endpoint for live upload queue updates.

    Connect to `/ws/uploads` for every project or `/ws/uploads?project_id=...`
    for one project. A snapshot is pushed on connect and after every queue
    change (new files, progress ticks, completion, removal).

    Message format:
    {
        "type": "queue_state",
        "channel": "*",
        "queue": [{"id": "upload-...", "file_name": "...", "status": "uploading",
                   "progress": {"percent": 42, "phase": "uploading", ...}, ...}],
        "is_processing": true,
        "current_upload": {...},
        "completed_count": 3,
        "failed_count": 0,
        "pending_count": 2,
        "total_in_queue": 6
    }

    Client messages: "ping" -> {"type": "pong"}, "get_state" -> snapshot.
    """
    queue = getattr(websocket.app.state, "upload_queue", None)
    if queue is None:
        await websocket.close(code=1013, reason="Upload queue is not running")
        return

    channel = project_id or ALL_PROJECTS
    await connection_manager.connect(websocket, channel)

    try:
        await websocket.send_json(queue_message(queue.get_state(), channel))

        # Keep connection alive and handle incoming messages
        while True:
            try:
                data = await websocket.receive_text()

                if data == "ping":
                    await websocket.send_json({"type": "pong"})
                elif data == "get_state":
                    await websocket.send_json(queue_message(queue.get_state(), channel))

            except WebSocketDisconnect:
                logger.info(f"[WebSocket] Client disconnected from {channel}")
                break
            except Exception as e:
                logger.error(f"[WebSocket] Error receiving message: {e}")
                break

    finally:
        connection_manager.disconnect(websocket, channel)
