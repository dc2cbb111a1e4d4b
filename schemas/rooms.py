from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinRoomEvent(CamelModel):
    room_id: str = Field(alias="roomId", min_length=1, max_length=64)
    user_name: Optional[str] = Field(default=None, alias="userName", max_length=64)

class CreateRoomEvent(CamelModel):
    user_name: Optional[str] = Field(default=None, alias="userName", max_length=64)

class CreateRoomRequest(CamelModel):
    user_name: Optional[str] = Field(default=None, alias="userName", max_length=64)

class RoomCreatedResponse(CamelModel):
    room_id: str = Field(alias="roomId")
    user_name: Optional[str] = Field(default=None, alias="userName")

class ActiveRoom(CamelModel):
    room_id: str = Field(alias="roomId")
    member_count: int = Field(alias="memberCount")
    member_names: list[str] = Field(alias="memberNames")

class ActiveRoomsResponse(CamelModel):
    rooms: list[ActiveRoom]

class RoomDetailsResponse(CamelModel):
    room_id: str = Field(alias="roomId")
    member_count: int = Field(alias="memberCount")
    member_names: list[str] = Field(alias="memberNames")
    message_count: int = Field(alias="messageCount")
