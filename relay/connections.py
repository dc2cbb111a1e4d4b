from dataclasses import dataclass
from typing import Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Connection:
    connection_id: str
    display_name: Optional[str] = None
    room_id: Optional[str] = None


class ConnectionRegistry:
    """Identity and current room of every live connection."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, connection_id: str) -> None:
        if connection_id in self._connections:
            return
        self._connections[connection_id] = Connection(connection_id)
        logger.debug(f"Registered connection {connection_id} (total: {len(self._connections)})")

    def set_identity(self, connection_id: str, display_name: str, room_id: Optional[str]) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            # Callers must register first; unknown connections are ignored
            logger.debug(f"Ignoring identity update for unknown connection {connection_id}")
            return
        connection.display_name = display_name
        connection.room_id = room_id

    def lookup(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.get(connection_id)
        if connection is None:
            return None
        # Copy so callers cannot mutate registry state
        return Connection(connection.connection_id, connection.display_name, connection.room_id)

    def remove(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.debug(f"Removed connection {connection_id} (total: {len(self._connections)})")

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
