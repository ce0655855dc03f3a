from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Dict, List, Optional
import json
import time
import uuid
import logging

import config
from errors import InvalidInput, QuizRoomError
from protocol import (
    Connected,
    ErrorEvent,
    JoinRoom,
    OutboundEvent,
    StartQuiz,
    SubmitAnswer,
    inbound_adapter,
)
from registry import RoomRegistry
from room import Room

logger = logging.getLogger(__name__)


def describe_validation_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"Invalid message: {location}: {message}" if location else f"Invalid message: {message}"


class RoomChannels:
    """Live connections and the room-scoped groups they are subscribed to."""

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self.groups: Dict[str, Dict[str, WebSocket]] = {}  # room_code -> {connection_id: ws}

    def register(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket

    def unregister(self, connection_id: str):
        self.connections.pop(connection_id, None)

    def subscribe(self, room_code: str, connection_id: str):
        ws = self.connections.get(connection_id)
        if ws is not None:
            self.groups.setdefault(room_code, {})[connection_id] = ws

    def unsubscribe(self, room_code: str, connection_id: str):
        group = self.groups.get(room_code)
        if group is None:
            return
        group.pop(connection_id, None)
        if not group:
            del self.groups[room_code]

    def members(self, room_code: str) -> List[str]:
        return list(self.groups.get(room_code, {}))

    async def send(self, connection_id: str, event: OutboundEvent):
        ws = self.connections.get(connection_id)
        if ws is None:
            return
        try:
            await ws.send_json(event.to_wire())
        except Exception:
            logger.debug("Could not deliver %s to %s", event.type, connection_id)

    async def publish(self, room_code: str, event: OutboundEvent):
        """Send an event to every connection subscribed to the room."""
        message = event.to_wire()
        disconnected = []
        for connection_id, ws in list(self.groups.get(room_code, {}).items()):
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.append(connection_id)
        for connection_id in disconnected:
            logger.info("Dropping unreachable connection %s from room %s", connection_id, room_code)
            self.unsubscribe(room_code, connection_id)


class ConnectionGateway:
    """Bridges WebSocket connections to room operations.

    Each connection is attached to at most one room. Inbound frames are
    validated into protocol models before a room is touched; errors go back
    to the originating connection only.

    There is no host role, but ``start_quiz`` is only accepted from a
    connection that has joined that room. A connection that never joined
    gets an error instead of starting someone else's quiz.
    """

    def __init__(self, registry: RoomRegistry, channels: RoomChannels,
                 allowed_origins: Optional[List[str]] = None):
        self.registry = registry
        self.channels = channels
        self.allowed_origins: List[str] = allowed_origins or []
        self.attachments: Dict[str, str] = {}  # connection_id -> room_code
        # WS rate limiting: connection_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.channels.register(connection_id, websocket)
        logger.info("Connection %s opened", connection_id)

        try:
            await websocket.send_json(Connected(connection_id=connection_id).to_wire())
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await self.send_error(connection_id, "Message too large")
                    continue

                if not self._allow_message(connection_id):
                    await self.send_error(connection_id, "Too many messages")
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from connection %s: %s", connection_id, data[:100])
                    await self.send_error(connection_id, "Invalid message format")
                    continue

                await self.handle_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info("Connection %s disconnected", connection_id)
        except Exception:
            logger.exception("WebSocket error for connection %s", connection_id)
        finally:
            self.disconnect(connection_id)

    def _allow_message(self, connection_id: str) -> bool:
        """Per-connection sliding window rate limit."""
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(connection_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        timestamps.append(now)
        return True

    async def send_error(self, connection_id: str, message: str):
        await self.channels.send(connection_id, ErrorEvent(message=message))

    async def handle_message(self, connection_id: str, message: dict):
        try:
            msg = inbound_adapter.validate_python(message)
        except ValidationError as e:
            logger.warning("Rejected message from connection %s: %s", connection_id, e.errors()[0].get("msg"))
            await self.send_error(connection_id, describe_validation_error(e))
            return

        try:
            room = self.registry.get_room(msg.room_id)
            if isinstance(msg, JoinRoom):
                await self.join(connection_id, room, msg.username)
            elif isinstance(msg, StartQuiz):
                if self.attachments.get(connection_id) != room.room_code:
                    raise InvalidInput("Join the room before starting the quiz")
                await room.start()
            elif isinstance(msg, SubmitAnswer):
                await room.submit_answer(connection_id, msg.question_index, msg.answer)
        except QuizRoomError as e:
            await self.send_error(connection_id, e.message)

    async def join(self, connection_id: str, room: Room, username: str):
        current = self.attachments.get(connection_id)
        if current is not None and current not in self.registry:
            # The attached room was evicted; the connection is free again
            self.release_room(current)
            current = None
        if current is not None and current != room.room_code:
            raise InvalidInput(f"Already joined room {current}")
        if current is None:
            self.attachments[connection_id] = room.room_code
            self.channels.subscribe(room.room_code, connection_id)
            logger.info("Connection %s attached to room %s", connection_id, room.room_code)
        await room.join(connection_id, username)

    def release_room(self, room_code: str):
        """Detach every connection from a room that left the registry."""
        for connection_id in self.channels.members(room_code):
            self.channels.unsubscribe(room_code, connection_id)
        released = [cid for cid, code in self.attachments.items() if code == room_code]
        for connection_id in released:
            del self.attachments[connection_id]
        if released:
            logger.info("Released %d connection(s) from room %s", len(released), room_code)

    def disconnect(self, connection_id: str):
        """Drop the attachment; the player's record stays in the room."""
        room_code = self.attachments.pop(connection_id, None)
        if room_code is not None:
            self.channels.unsubscribe(room_code, connection_id)
            logger.info("Connection %s detached from room %s", connection_id, room_code)
        self.channels.unregister(connection_id)
        self.msg_timestamps.pop(connection_id, None)
