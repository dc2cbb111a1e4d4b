import asyncio
from typing import Any, Dict, Iterable, Optional, Protocol

from constants import OUTBOX_MAX_SIZE
from logging_config import get_logger

logger = get_logger(__name__)

# WebSocket close code "try again later", used when a reader falls too far behind
CLOSE_CODE_OVERLOADED = 1013


class EventSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Outbox:
    """Ordered outbound queue of one connection, drained by its own writer task."""

    def __init__(self, connection_id: str, websocket: EventSocket, max_size: int):
        self.connection_id = connection_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.held = False
        self.parked: list[dict] = []
        self.closed = False
        self.task: Optional[asyncio.Task] = None


class FanoutDispatcher:
    """Delivers events to one connection, a set of room members, or everyone.

    Enqueueing is synchronous and never waits on the network, so callers can
    mutate state and emit its events without yielding to other handlers. Each
    recipient sees events in the order they were enqueued.
    """

    def __init__(self, max_outbox_size: int = OUTBOX_MAX_SIZE):
        self.max_outbox_size = max_outbox_size
        self._outboxes: Dict[str, Outbox] = {}
        self._closing: set = set()

    def attach(self, connection_id: str, websocket: EventSocket) -> None:
        if connection_id in self._outboxes:
            return
        outbox = Outbox(connection_id, websocket, self.max_outbox_size)
        outbox.task = asyncio.create_task(self._drain(outbox))
        self._outboxes[connection_id] = outbox
        logger.debug(f"Attached outbox for connection {connection_id}")

    def discard(self, connection_id: str) -> Optional[asyncio.Task]:
        """Stop delivering to a connection without yielding; returns its cancelled writer."""
        outbox = self._outboxes.pop(connection_id, None)
        if outbox is None:
            return None
        outbox.closed = True
        logger.debug(f"Detached outbox for connection {connection_id}")
        if outbox.task and not outbox.task.done():
            outbox.task.cancel()
            return outbox.task
        return None

    async def detach(self, connection_id: str) -> None:
        writer = self.discard(connection_id)
        if writer is None:
            return
        try:
            await writer
        except asyncio.CancelledError:
            pass

    def is_attached(self, connection_id: str) -> bool:
        return connection_id in self._outboxes

    def send(self, connection_id: str, event: dict) -> bool:
        outbox = self._outboxes.get(connection_id)
        if outbox is None or outbox.closed:
            logger.debug(f"Dropping {event.get('type')} for unknown connection {connection_id}")
            return False
        if outbox.held:
            outbox.parked.append(event)
            return True
        return self._enqueue(outbox, event)

    def send_to_members(self, member_ids: Iterable[str], event: dict, exclude: Optional[str] = None) -> int:
        delivered = 0
        for connection_id in member_ids:
            if connection_id == exclude:
                continue
            if self.send(connection_id, event):
                delivered += 1
        return delivered

    def broadcast(self, event: dict) -> int:
        return self.send_to_members(list(self._outboxes), event)

    def hold(self, connection_id: str) -> None:
        """Park events for a connection until release() is called."""
        outbox = self._outboxes.get(connection_id)
        if outbox is not None:
            outbox.held = True

    def release(self, connection_id: str, preface: Iterable[dict] = ()) -> None:
        """Deliver `preface`, then everything parked since hold().

        Parked events carrying an `id` already present in the preface are
        dropped so a message is never delivered twice.
        """
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        preface = list(preface)
        seen = {event["id"] for event in preface if "id" in event}
        parked = [event for event in outbox.parked if event.get("id") not in seen]
        if len(parked) != len(outbox.parked):
            logger.debug(f"Dropped {len(outbox.parked) - len(parked)} parked duplicates for connection {connection_id}")
        outbox.parked = []
        outbox.held = False
        for event in preface + parked:
            if not self._enqueue(outbox, event):
                break

    async def flush(self) -> None:
        """Wait until every outbox has been written out."""
        for outbox in list(self._outboxes.values()):
            if outbox.task and not outbox.task.done():
                await outbox.queue.join()

    async def close_all(self) -> None:
        for connection_id in list(self._outboxes):
            await self.detach(connection_id)

    def __len__(self) -> int:
        return len(self._outboxes)

    def _enqueue(self, outbox: Outbox, event: dict) -> bool:
        if outbox.closed:
            return False
        try:
            outbox.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for connection {outbox.connection_id}, closing it")
            outbox.closed = True
            task = asyncio.create_task(self._close_socket(outbox, CLOSE_CODE_OVERLOADED))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
            return False

    async def _drain(self, outbox: Outbox) -> None:
        while True:
            event = await outbox.queue.get()
            try:
                await outbox.websocket.send_json(event)
            except Exception as e:
                # The receive loop sees the disconnect and runs the leave path
                logger.warning(f"Error sending {event.get('type')} to connection {outbox.connection_id}: {e}")
                outbox.closed = True
                self._discard_pending(outbox)
                return
            finally:
                outbox.queue.task_done()

    @staticmethod
    def _discard_pending(outbox: Outbox) -> None:
        while not outbox.queue.empty():
            outbox.queue.get_nowait()
            outbox.queue.task_done()

    async def _close_socket(self, outbox: Outbox, code: int) -> None:
        self._discard_pending(outbox)
        try:
            await outbox.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Error closing websocket for connection {outbox.connection_id}: {e}")
