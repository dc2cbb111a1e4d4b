import asyncio
import random
import string
from collections import OrderedDict
from typing import Optional

from pydantic import ValidationError

from backend import RedisBackend
from constants import ROOM_ID_LENGTH, ROOM_ID_MAX_ATTEMPTS, MAX_MESSAGE_LENGTH
from relay.connections import ConnectionRegistry
from relay.directory import ActiveRoomDirectory
from relay.dispatcher import EventSocket, FanoutDispatcher
from relay.membership import Arrival, Departure, RoomMembershipManager
from schemas.messages import ChatMessage, SendMessageEvent
from schemas.rooms import CreateRoomEvent, JoinRoomEvent
from logging_config import get_logger

logger = get_logger(__name__)

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits

# Issued-but-unused room ids remembered for collision checks
ISSUED_ROOM_IDS_LIMIT = 1024


class RoomIdUnavailable(RuntimeError):
    pass


def generate_room_id(length: int = ROOM_ID_LENGTH) -> str:
    return ''.join(random.choices(ROOM_ID_ALPHABET, k=length))


def error_event(code: str, message: str) -> dict:
    return {"type": "error", "code": code, "message": message}


def default_display_name(connection_id: str) -> str:
    return f"User_{connection_id[:8]}"


class ChatRelay:
    """Entry point for every inbound client event.

    All room and connection state is mutated from the event loop thread, and
    never across an ``await``: a state change and the events it produces are
    enqueued together, so every recipient observes them in mutation order.
    """

    def __init__(self, backend: RedisBackend, dispatcher: Optional[FanoutDispatcher] = None):
        self.backend = backend
        self.registry = ConnectionRegistry()
        self.membership = RoomMembershipManager(self.registry)
        self.dispatcher = dispatcher or FanoutDispatcher()
        self.directory = ActiveRoomDirectory(self.membership, self.dispatcher)
        self._issued_room_ids: "OrderedDict[str, None]" = OrderedDict()
        self._pending_writes: set = set()

    def connect(self, connection_id: str, websocket: EventSocket) -> None:
        self.registry.register(connection_id)
        self.dispatcher.attach(connection_id, websocket)
        logger.info(f"Connection {connection_id} opened (total: {len(self.registry)})")

    async def disconnect(self, connection_id: str) -> None:
        if connection_id not in self.registry:
            return
        departure = self.membership.leave(connection_id)
        self.registry.remove(connection_id)
        writer = self.dispatcher.discard(connection_id)
        if departure is not None:
            self._announce_departure(departure)
            self.directory.publish()
        logger.info(f"Connection {connection_id} closed (total: {len(self.registry)})")
        if writer is not None:
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def handle_event(self, connection_id: str, frame: dict) -> None:
        event_type = frame.get("type")
        logger.debug(f"Event {event_type} from connection {connection_id}")
        try:
            if event_type == "join-room":
                event = JoinRoomEvent.model_validate(frame)
                await self.join_room(connection_id, event.room_id, event.user_name)
            elif event_type == "leave-room":
                self.leave_room(connection_id)
            elif event_type == "send-message":
                event = SendMessageEvent.model_validate(frame)
                self.send_message(connection_id, event.content, event.kind, event.duration)
            elif event_type == "create-room":
                event = CreateRoomEvent.model_validate(frame)
                await self.create_room(connection_id, event.user_name)
            elif event_type == "get-active-rooms":
                self.get_active_rooms(connection_id)
            else:
                logger.debug(f"Unknown event type {event_type!r} from connection {connection_id}")
                self.dispatcher.send(connection_id, error_event("unknown-event", f"Unknown event type: {event_type}"))
        except ValidationError as e:
            logger.debug(f"Invalid {event_type} payload from connection {connection_id}: {e}")
            self.dispatcher.send(connection_id, error_event("invalid-payload", f"Invalid {event_type} payload"))

    async def join_room(self, connection_id: str, room_id: str, user_name: Optional[str] = None) -> Optional[Arrival]:
        room_id = room_id.strip()
        if not room_id:
            self.dispatcher.send(connection_id, error_event("invalid-payload", "Room id must not be empty"))
            return None
        display_name = (user_name or "").strip() or default_display_name(connection_id)

        arrival = self.membership.join(connection_id, room_id, display_name)
        if arrival is None:
            return None
        self._issued_room_ids.pop(room_id, None)

        if arrival.previous is not None:
            self._announce_departure(arrival.previous)

        # Everything addressed to the joiner waits behind its history replay
        self.dispatcher.hold(connection_id)
        self.dispatcher.send_to_members(arrival.member_ids, {
            "type": "user-joined",
            "userName": display_name,
            "members": arrival.member_names,
            "message": f"{display_name} joined the room",
        }, exclude=connection_id)
        self.dispatcher.send(connection_id, {
            "type": "room-info",
            "roomId": room_id,
            "members": arrival.member_names,
            "message": f"Welcome {display_name}! You joined room {room_id}",
        })
        self.directory.publish()
        if arrival.same_room:
            action = "renamed in"
        elif arrival.room_created:
            action = "created"
        else:
            action = "joined"
        logger.info(f"User {display_name} {action} room {room_id} (members: {len(arrival.member_ids)})")

        history = await self.backend.history(room_id)
        self.dispatcher.release(connection_id, [message.to_event(is_replay=True) for message in history])
        logger.debug(f"Replayed {len(history)} messages to connection {connection_id} in room {room_id}")
        return arrival

    def leave_room(self, connection_id: str) -> Optional[Departure]:
        departure = self.membership.leave(connection_id)
        if departure is None:
            return None
        self._announce_departure(departure)
        self.directory.publish()
        return departure

    def send_message(self, connection_id: str, content: str, kind: str = "text", duration: Optional[float] = None) -> Optional[ChatMessage]:
        connection = self.registry.lookup(connection_id)
        if connection is None or connection.room_id is None:
            logger.debug(f"Rejected message from connection {connection_id}: not in a room")
            self.dispatcher.send(connection_id, error_event("not-in-room", "Join a room before sending messages"))
            return None

        if kind == "text":
            duration = None
        if not content.strip():
            self.dispatcher.send(connection_id, error_event("empty-message", "Message content must not be empty"))
            return None
        if len(content) > MAX_MESSAGE_LENGTH:
            self.dispatcher.send(connection_id, error_event("invalid-payload", f"Message longer than {MAX_MESSAGE_LENGTH} characters"))
            return None

        message = ChatMessage(
            room_id=connection.room_id,
            sender=connection.display_name,
            content=content,
            kind=kind,
            duration=duration,
        )
        # Delivery does not wait for storage
        delivered = self.dispatcher.send_to_members(self.membership.member_ids(message.room_id), message.to_event())
        self._persist(message)
        logger.debug(f"Message {message.id} from {message.sender} in room {message.room_id} delivered to {delivered} connections")
        return message

    async def create_room(self, connection_id: str, user_name: Optional[str] = None) -> Optional[str]:
        try:
            room_id = await self.allocate_room_id()
        except RoomIdUnavailable as e:
            logger.error(f"Room creation failed for connection {connection_id}: {e}")
            self.dispatcher.send(connection_id, error_event("room-id-unavailable", "Could not allocate a room id, try again"))
            return None
        self.dispatcher.send(connection_id, {"type": "room-created", "roomId": room_id, "userName": user_name})
        logger.info(f"Room id {room_id} issued to connection {connection_id}")
        return room_id

    def get_active_rooms(self, connection_id: str) -> None:
        self.directory.send_to(connection_id)

    async def allocate_room_id(self) -> str:
        """Generate a room id that is not active, not already issued and has no stored log."""
        for _ in range(ROOM_ID_MAX_ATTEMPTS):
            candidate = generate_room_id()
            if self.membership.has_room(candidate) or candidate in self._issued_room_ids:
                continue
            if await self.backend.has_history(candidate):
                continue
            # Re-check: other handlers may have run during the await
            if self.membership.has_room(candidate) or candidate in self._issued_room_ids:
                continue
            self._issued_room_ids[candidate] = None
            while len(self._issued_room_ids) > ISSUED_ROOM_IDS_LIMIT:
                self._issued_room_ids.popitem(last=False)
            return candidate
        raise RoomIdUnavailable(f"no free room id after {ROOM_ID_MAX_ATTEMPTS} attempts")

    def _announce_departure(self, departure: Departure) -> None:
        name = departure.display_name
        if not departure.room_deleted:
            self.dispatcher.send_to_members(departure.remaining_ids, {
                "type": "user-left",
                "userName": name,
                "members": departure.remaining_names,
                "message": f"{name} left the room",
            }, exclude=departure.connection_id)
        logger.info(f"User {name} left room {departure.room_id} (remaining: {len(departure.remaining_ids)})")

    def _persist(self, message: ChatMessage) -> None:
        task = asyncio.create_task(self.backend.append(message))
        self._pending_writes.add(task)
        task.add_done_callback(self._on_persisted)

    def _on_persisted(self, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Delivered live but absent from later replays
            logger.error(f"Failed to persist message: {error}", exc_info=error)

    async def wait_for_pending_writes(self) -> None:
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.wait_for_pending_writes()
        await self.dispatcher.close_all()

    def connection_count(self) -> int:
        return len(self.registry)

    def room_count(self) -> int:
        return self.membership.room_count()
