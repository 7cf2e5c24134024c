from typing import Dict, List, Set
from fastapi import WebSocket, WebSocketDisconnect
import json
from datetime import datetime, timezone
import logging

from trendify.api.schemas import WebSocketMessage, WSMessageType

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and message broadcasting"""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.connection_run_ids: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, run_id: str):
        """Connect a new WebSocket client"""
        await websocket.accept()

        if run_id not in self.active_connections:
            self.active_connections[run_id] = set()
        self.active_connections[run_id].add(websocket)
        self.connection_run_ids[websocket] = run_id

        logger.info(f"New WebSocket connection for run {run_id}")

    def disconnect(self, websocket: WebSocket, run_id: str):
        """Disconnect a WebSocket client"""
        if run_id in self.active_connections:
            self.active_connections[run_id].discard(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]

        self.connection_run_ids.pop(websocket, None)
        logger.info(f"WebSocket disconnected for run {run_id}")

    async def send_message_to_run(self, run_id: str, message: WebSocketMessage):
        """Send a message to all connections for a specific run"""
        if run_id not in self.active_connections:
            logger.debug(f"No active connections for run {run_id}")
            return

        message_data = message.model_dump_json()

        disconnected_connections = []
        for connection in list(self.active_connections[run_id]):
            try:
                await connection.send_text(message_data)
            except Exception as e:
                logger.warning(f"Failed to send message to WebSocket for run {run_id}: {e}")
                disconnected_connections.append(connection)

        for connection in disconnected_connections:
            self.disconnect(connection, run_id)

    async def send_event(self, run_id: str, message_type: str, data: dict):
        await self.send_message_to_run(run_id, WebSocketMessage(type=message_type, run_id=run_id, data=data))

    async def ping_connections(self, run_id: str):
        """Send ping to keep connections alive"""
        await self.send_event(run_id, WSMessageType.PING, {"timestamp": datetime.now(timezone.utc).isoformat()})

    def get_connection_count(self, run_id: str) -> int:
        return len(self.active_connections.get(run_id, []))

    def get_all_active_runs(self) -> List[str]:
        return list(self.active_connections.keys())


# Global connection manager instance
connection_manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket, run_id: str):
    """WebSocket endpoint handler"""
    await connection_manager.connect(websocket, run_id)

    try:
        await connection_manager.ping_connections(run_id)

        while True:
            data = await websocket.receive_text()
            try:
                client_message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received from client for run {run_id}: {data}")
                continue

            logger.debug(f"Received client message for run {run_id}: {client_message}")
            if isinstance(client_message, dict) and client_message.get("type") == "ping":
                await connection_manager.ping_connections(run_id)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for run {run_id}")
    finally:
        connection_manager.disconnect(websocket, run_id)
