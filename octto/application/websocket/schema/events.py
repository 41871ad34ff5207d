from typing import Dict, Any, Optional, Literal, Union, Annotated
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from enum import Enum

from octto.domain.models.questions import QuestionType


class EventType(str, Enum):
    """WebSocket message types"""
    QUESTION = "question"
    CANCEL = "cancel"
    END = "end"
    RESPONSE = "response"
    CONNECTED = "connected"


class BaseEvent(BaseModel):
    """Base model for all WebSocket messages"""
    type: EventType

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Server -> client


class QuestionEvent(BaseEvent):
    """Deliver a question to the browser"""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal[EventType.QUESTION] = EventType.QUESTION
    id: str
    question_type: QuestionType = Field(alias="questionType")
    config: Dict[str, Any] = Field(default_factory=dict)


class CancelEvent(BaseEvent):
    """Withdraw a pending question"""
    type: Literal[EventType.CANCEL] = EventType.CANCEL
    id: str


class EndEvent(BaseEvent):
    """Session is over"""
    type: Literal[EventType.END] = EventType.END


ServerEvent = Union[QuestionEvent, CancelEvent, EndEvent]


# Client -> server


class ResponseMessage(BaseEvent):
    """Answer to a question; the answer payload is opaque to the transport"""
    type: Literal[EventType.RESPONSE] = EventType.RESPONSE
    id: str
    answer: Optional[Any] = None


class ConnectedMessage(BaseEvent):
    """Client handshake, informational only"""
    type: Literal[EventType.CONNECTED] = EventType.CONNECTED


ClientMessage = Annotated[
    Union[ResponseMessage, ConnectedMessage],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]) -> Union[ResponseMessage, ConnectedMessage]:
    """
    Parse a text frame sent by the browser.

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON or not a known message
    """
    return _client_message_adapter.validate_json(raw)
