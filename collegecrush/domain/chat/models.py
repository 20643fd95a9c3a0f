"""Domain models for chat delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class DeliveryState(str, Enum):
	SENDING = "sending"
	SENT = "sent"
	QUEUED = "queued-for-retry"
	FAILED = "failed"


@dataclass(slots=True)
class Message:
	"""Server-confirmed chat message."""

	id: str
	text: str
	sender_id: str
	created_at: datetime
	conversation_id: str
	is_read: bool = False

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"text": self.text,
			"sender_id": self.sender_id,
			"created_at": self.created_at.isoformat(),
			"conversation_id": self.conversation_id,
			"is_read": self.is_read,
		}


@dataclass(slots=True)
class OutboundMessage:
	"""Client-side lifecycle of a message until the backend confirms it.

	``temp_id`` identifies the optimistic copy shown in the UI; once ``message``
	is set it carries the real server id.
	"""

	temp_id: str
	conversation_id: str
	text: str
	sender_id: str
	state: DeliveryState = DeliveryState.SENDING
	attempts: int = 0
	message: Optional[Message] = None
	last_error: Optional[BaseException] = field(default=None, repr=False)
	in_flight: bool = False


__all__ = ["DeliveryState", "Message", "OutboundMessage"]
