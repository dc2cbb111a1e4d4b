from dataclasses import dataclass, field
from typing import Dict, Optional

from relay.connections import ConnectionRegistry
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Departure:
    """A connection was removed from a room."""

    connection_id: str
    room_id: str
    display_name: Optional[str]
    remaining_ids: list[str] = field(default_factory=list)
    remaining_names: list[str] = field(default_factory=list)
    room_deleted: bool = False


@dataclass(frozen=True)
class Arrival:
    """A connection was added to a room (or renamed inside it)."""

    connection_id: str
    room_id: str
    display_name: str
    member_ids: list[str] = field(default_factory=list)
    member_names: list[str] = field(default_factory=list)
    room_created: bool = False
    same_room: bool = False
    previous: Optional[Departure] = None


class RoomMembershipManager:
    """Owns which connections belong to which room.

    A connection is in at most one room. Rooms exist only while they have
    members: the first join creates a room, the last leave deletes it.
    Member sets are insertion-ordered dicts so member lists come out in join
    order.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._rooms: Dict[str, Dict[str, None]] = {}

    def join(self, connection_id: str, room_id: str, display_name: str) -> Optional[Arrival]:
        current = self.registry.lookup(connection_id)
        if current is None:
            logger.debug(f"Join ignored for unregistered connection {connection_id}")
            return None

        same_room = current.room_id == room_id and room_id in self._rooms
        previous = None
        if current.room_id is not None and not same_room:
            previous = self.leave(connection_id)

        self.registry.set_identity(connection_id, display_name, room_id)

        room_created = room_id not in self._rooms
        if room_created:
            self._rooms[room_id] = {}
            logger.debug(f"Room {room_id} created")
        self._rooms[room_id][connection_id] = None

        logger.debug(f"Connection {connection_id} ({display_name}) joined room {room_id} (members: {len(self._rooms[room_id])})")
        return Arrival(
            connection_id=connection_id,
            room_id=room_id,
            display_name=display_name,
            member_ids=self.member_ids(room_id),
            member_names=self.members_of(room_id),
            room_created=room_created,
            same_room=same_room,
            previous=previous,
        )

    def leave(self, connection_id: str) -> Optional[Departure]:
        current = self.registry.lookup(connection_id)
        if current is None or current.room_id is None:
            return None

        room_id = current.room_id
        self.registry.set_identity(connection_id, current.display_name, None)

        members = self._rooms.get(room_id)
        if members is None or connection_id not in members:
            logger.warning(f"Connection {connection_id} claimed room {room_id} but was not a member")
            return None
        del members[connection_id]

        room_deleted = not members
        if room_deleted:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} deleted because it is empty")

        logger.debug(f"Connection {connection_id} ({current.display_name}) left room {room_id}")
        return Departure(
            connection_id=connection_id,
            room_id=room_id,
            display_name=current.display_name,
            remaining_ids=self.member_ids(room_id),
            remaining_names=self.members_of(room_id),
            room_deleted=room_deleted,
        )

    def member_ids(self, room_id: str) -> list[str]:
        return list(self._rooms.get(room_id, ()))

    def members_of(self, room_id: str) -> list[str]:
        names = []
        for connection_id in self._rooms.get(room_id, ()):
            connection = self.registry.lookup(connection_id)
            if connection and connection.display_name:
                names.append(connection.display_name)
        return names

    def occupancy(self) -> list[tuple[str, list[str]]]:
        """(room_id, member names) for every existing room."""
        return [(room_id, self.members_of(room_id)) for room_id in self._rooms]

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def room_count(self) -> int:
        return len(self._rooms)
