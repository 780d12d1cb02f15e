"""
WebSocket connection manager for live bus updates.

Each connected client subscribes to one broker topic. The manager
forwards that subscription's events to the socket, answers client pings,
and sends a heartbeat whenever the topic has been quiet for the configured
interval.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict

from fastapi import WebSocket, WebSocketDisconnect

from realtime.broker import ChangeBroker, Subscription

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ConnectionManager:
    """
    Manager for WebSocket clients subscribed to broker topics.

    Attributes:
        active_connections: Open sockets mapped to their subscription
    """

    def __init__(self, broker: ChangeBroker, heartbeat_interval: float = 30.0):
        self.broker = broker
        self.heartbeat_interval = heartbeat_interval
        self.active_connections: Dict[WebSocket, Subscription] = {}

    async def connect(self, websocket: WebSocket, topic: str) -> Subscription:
        """
        Accept the socket, subscribe it to ``topic`` and confirm the connection.

        Args:
            websocket: The WebSocket connection to accept
            topic: Broker topic to stream

        Returns:
            The broker subscription feeding this socket
        """
        await websocket.accept()
        subscription = self.broker.subscribe(topic)
        self.active_connections[websocket] = subscription

        logger.info(
            f"WebSocket client connected to {topic}. Total connections: {len(self.active_connections)}",
            extra={"extra_data": {
                "topic": topic,
                "total_connections": len(self.active_connections),
                "client_host": websocket.client.host if websocket.client else "unknown",
            }}
        )

        await self._send_to_client(websocket, {
            "type": "connection",
            "status": "connected",
            "topic": topic,
            "message": f"Subscribed to {topic}",
            "timestamp": _utc_timestamp(),
        })
        return subscription

    async def disconnect(self, websocket: WebSocket) -> None:
        """
        Drop the socket and release its subscription.

        Runs while the serving task may be cancelled, so it never awaits.
        """
        subscription = self.active_connections.pop(websocket, None)
        if subscription is not None:
            self.broker.unsubscribe(subscription)

        logger.info(
            f"WebSocket client disconnected. Total connections: {len(self.active_connections)}",
            extra={"extra_data": {"total_connections": len(self.active_connections)}}
        )

    async def reject(self, websocket: WebSocket, reason: str) -> None:
        """Close a socket before accepting it (unknown topic)."""
        logger.warning(
            "Rejected WebSocket subscription",
            extra={"extra_data": {"reason": reason}}
        )
        await websocket.close(code=POLICY_VIOLATION, reason=reason)

    async def _send_to_client(self, websocket: WebSocket, data: dict) -> bool:
        """
        Send one JSON frame.

        Returns:
            True if the send succeeded, False otherwise
        """
        try:
            await websocket.send_json(data)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send to WebSocket client: {e}",
                extra={"extra_data": {"error": str(e)}}
            )
            return False

    async def _forward_events(self, websocket: WebSocket, subscription: Subscription) -> None:
        while True:
            event = await subscription.get(timeout=self.heartbeat_interval)
            if event is None:
                message = {"type": "heartbeat", "timestamp": _utc_timestamp()}
            else:
                message = event.to_message()
            if not await self._send_to_client(websocket, message):
                return

    async def _receive_client_messages(self, websocket: WebSocket) -> None:
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                return
            except ValueError:
                # Non-JSON text frames are ignored
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await self._send_to_client(websocket, {
                    "type": "pong",
                    "timestamp": _utc_timestamp(),
                })

    async def _stop_task(self, task: asyncio.Task) -> None:
        """Cancel one serving task and wait for it to finish."""
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(
                f"WebSocket task failed: {e}",
                extra={"extra_data": {"error": str(e)}}
            )

    async def stream(self, websocket: WebSocket, topic: str) -> None:
        """
        Serve one client until it disconnects.

        Args:
            websocket: The client socket (not yet accepted)
            topic: Broker topic to stream
        """
        subscription = await self.connect(websocket, topic)
        sender = asyncio.create_task(self._forward_events(websocket, subscription))
        receiver = asyncio.create_task(self._receive_client_messages(websocket))
        try:
            await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self.disconnect(websocket)
            for task in (sender, receiver):
                await self._stop_task(task)

    def get_connection_count(self) -> int:
        return len(self.active_connections)
