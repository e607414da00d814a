"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from app.schemas.chat import Message, Participant, Room
from app.schemas.events import InboundEvent, OutboundEvent, parse_inbound
from app.schemas.rooms import (
    CreateRoomRequest,
    CreateRoomResponse,
    DestroyRoomResponse,
    ErrorResponse,
    RoomDetailResponse,
)
