import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import websockets
from websockets.asyncio.server import Server, ServerConnection
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

TOPIC_PREFIX = "/stations/"


def topic_from_path(path: str) -> Optional[str]:
    """Map a subscription path like /stations/42 to its topic, station_42"""
    path = path.split("?", 1)[0].rstrip("/")
    if not path.startswith(TOPIC_PREFIX):
        return None
    station_id = path[len(TOPIC_PREFIX) :]
    if not station_id.isdigit():
        return None
    return f"station_{int(station_id)}"


class StationBroadcaster:
    """Fan-out of booking events to websocket subscribers of a station topic.

    publish() never waits on a subscriber: each send runs as its own task,
    bounded by send_timeout. A subscriber whose send fails or times out is
    dropped from its topic.
    """

    def __init__(self, send_timeout: float = 5.0):
        self.subscribers: Dict[str, Set[ServerConnection]] = {}
        self.server: Optional[Server] = None
        self.send_timeout = send_timeout
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, topic: str, websocket: ServerConnection) -> None:
        self.subscribers.setdefault(topic, set()).add(websocket)

    def unsubscribe(self, topic: str, websocket: ServerConnection) -> None:
        connections = self.subscribers.get(topic)
        if not connections:
            return
        connections.discard(websocket)
        if not connections:
            del self.subscribers[topic]

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self.subscribers.get(topic, ()))
        return sum(len(connections) for connections in self.subscribers.values())

    async def publish(self, topic: str, event: Dict[str, Any]) -> None:
        """Queue an event for every subscriber of topic and return immediately"""
        connections = list(self.subscribers.get(topic, ()))
        if not connections:
            return

        message = json.dumps(event, default=str)
        for websocket in connections:
            task = asyncio.create_task(self._send(topic, websocket, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        logger.debug(f"Queued {event.get('type')} for {len(connections)} on {topic}")

    async def _send(self, topic: str, websocket: ServerConnection, message: str):
        try:
            await asyncio.wait_for(websocket.send(message), timeout=self.send_timeout)
            return
        except ConnectionClosed:
            reason = "closed"
        except asyncio.TimeoutError:
            reason = f"no progress in {self.send_timeout}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"

        self.unsubscribe(topic, websocket)
        logger.warning(
            f"Dropped subscriber on {topic} ({reason}); "
            f"{self.subscriber_count(topic)} left"
        )

    async def drain(self) -> None:
        """Wait for sends still in flight"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def on_connect(self, websocket: ServerConnection):
        """Handle a new subscriber connection"""
        topic = topic_from_path(websocket.request.path)

        if topic is None:
            logger.error(
                f"Invalid subscription path {websocket.request.path} - rejecting"
            )
            await websocket.close(code=1008, reason="Expected /stations/<id>")
            return

        self.subscribe(topic, websocket)
        logger.info(f"New subscriber on {topic}")
        try:
            # Subscribers only listen; inbound frames are ignored
            async for _ in websocket:
                pass
        except ConnectionClosed:
            pass
        finally:
            self.unsubscribe(topic, websocket)
            logger.info(f"Subscriber left {topic}")

    async def start(self, host: str = "0.0.0.0", port: int = 9000):  # nosec
        """Start the real-time WebSocket server"""
        logger.info(f"Starting real-time server on {host}:{port}")
        self.server = await websockets.serve(self.on_connect, host, port)
        logger.info(f"Real-time server started on {host}:{port}")
        return self.server

    async def close(self):
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        if self.server:
            self.server.close()
            await self.server.wait_closed()
        self.server = None
