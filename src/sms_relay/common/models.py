from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


UNKNOWN_SENDER = "Unknown"


def local_now() -> datetime:
    return datetime.now().astimezone()


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    destination_id: str


class ForwardingState(BaseModel):
    enabled: bool = True
    last_status: Optional[str] = None
    first_run: bool = True


class InboundMessage(BaseModel):
    sender: str
    body: str
    received_at: datetime = Field(default_factory=local_now)


class SmsEvent(BaseModel):
    """A message-received event as delivered by the event source.

    One SMS can arrive as several fragments; any of them may be null.
    """

    originating_address: Optional[str] = None
    fragments: List[Optional[str]] = Field(default_factory=list)
    received_at: datetime = Field(default_factory=local_now)

    def to_message(self) -> Optional[InboundMessage]:
        if not self.fragments:
            return None
        return InboundMessage(
            sender=self.originating_address or UNKNOWN_SENDER,
            body="\n".join(fragment or "" for fragment in self.fragments),
            received_at=self.received_at,
        )


class DestinationInfo(BaseModel):
    id: int
    first_name: str = ""
    username: str = ""
    title: str = ""


class Success(BaseModel):
    value: Any = None


class Failure(BaseModel):
    reason: str = ""


OutboundResult = Union[Success, Failure]
