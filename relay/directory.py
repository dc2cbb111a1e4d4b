from relay.dispatcher import FanoutDispatcher
from relay.membership import RoomMembershipManager
from schemas.rooms import ActiveRoom
from logging_config import get_logger

logger = get_logger(__name__)


class ActiveRoomDirectory:
    """List of non-empty rooms, derived from membership state on every call.

    Nothing is cached; each snapshot walks the live member sets.
    """

    def __init__(self, membership: RoomMembershipManager, dispatcher: FanoutDispatcher):
        self.membership = membership
        self.dispatcher = dispatcher

    def snapshot(self) -> list[ActiveRoom]:
        rooms = []
        for room_id, names in sorted(self.membership.occupancy()):
            if not names:
                continue
            rooms.append(ActiveRoom(room_id=room_id, member_count=len(names), member_names=names))
        return rooms

    def event(self) -> dict:
        return {
            "type": "active-rooms",
            "rooms": [room.model_dump(by_alias=True) for room in self.snapshot()],
        }

    def publish(self) -> None:
        """Broadcast the current snapshot to every connection."""
        event = self.event()
        delivered = self.dispatcher.broadcast(event)
        logger.debug(f"Published active rooms ({len(event['rooms'])} rooms) to {delivered} connections")

    def send_to(self, connection_id: str) -> None:
        self.dispatcher.send(connection_id, self.event())
