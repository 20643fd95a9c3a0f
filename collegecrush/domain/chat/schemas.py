"""Pydantic schemas for message rows exchanged with the backend."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, field_validator

from .models import Message


class MessageRow(BaseModel):
	"""Wire shape of a ``messages`` row (REST responses and realtime events)."""

	model_config = ConfigDict(extra="ignore")

	id: str
	text: str = ""
	sender_id: str
	created_at: datetime
	conversation_id: str
	is_read: bool = False

	@field_validator("id", "sender_id", "conversation_id", mode="before")
	@classmethod
	def _as_str(cls, value: Any) -> Any:
		return str(value) if value is not None else value

	@field_validator("is_read", mode="before")
	@classmethod
	def _as_bool(cls, value: Any) -> Any:
		if value is None or value == "":
			return False
		if isinstance(value, str):
			return value.strip().lower() in ("1", "true", "t", "yes")
		return value

	def to_model(self) -> Message:
		created_at = self.created_at
		if created_at.tzinfo is None:
			created_at = created_at.replace(tzinfo=timezone.utc)
		return Message(
			id=self.id,
			text=self.text,
			sender_id=self.sender_id,
			created_at=created_at,
			conversation_id=self.conversation_id,
			is_read=self.is_read,
		)


def normalize_message(row: Mapping[str, Any]) -> Message:
	return MessageRow.model_validate(dict(row)).to_model()


__all__ = ["MessageRow", "normalize_message"]
