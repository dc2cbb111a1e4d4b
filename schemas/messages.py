import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import ConfigDict, Field, model_validator

from schemas.rooms import CamelModel

MessageKind = Literal["text", "audio"]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class SendMessageEvent(CamelModel):
    content: str
    kind: MessageKind = "text"
    duration: Optional[float] = Field(default=None, ge=0)


class ChatMessage(CamelModel):
    """One stored chat event. Never mutated after it is created."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    room_id: str = Field(alias="roomId")
    sender: str
    content: str
    kind: MessageKind = "text"
    timestamp: str = Field(default_factory=utc_timestamp)
    duration: Optional[float] = None

    @model_validator(mode="after")
    def _duration_only_for_audio(self):
        if self.kind != "audio" and self.duration is not None:
            raise ValueError("duration is only valid for audio messages")
        return self

    def to_event(self, is_replay: bool = False) -> dict:
        """Outbound `receive-message` payload."""
        event = {
            "type": "receive-message",
            "id": self.id,
            "roomId": self.room_id,
            "kind": self.kind,
            "content": self.content,
            "sender": self.sender,
            "timestamp": self.timestamp,
            "isReplay": is_replay,
        }
        if self.duration is not None:
            event["duration"] = self.duration
        return event
