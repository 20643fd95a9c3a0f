"""Domain-level exceptions for message delivery and realtime subscriptions."""

from __future__ import annotations

from typing import Optional


class MessagingError(Exception):
	"""Base class for outbound messaging errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class MessageValidationError(MessagingError, ValueError):
	reason = "empty_text"


class BackendError(MessagingError):
	"""The backend rejected a call or could not be reached."""

	reason = "backend_error"

	def __init__(self, detail: str | None = None, *, status: Optional[int] = None) -> None:
		super().__init__(detail or self.reason)
		self.status = status


class BackendUnavailable(BackendError):
	reason = "backend_unavailable"


class MessageQueuedForRetry(MessagingError):
	"""The first attempt failed; the message waits in the retry queue."""

	reason = "queued"

	def __init__(self, temp_id: str, cause: BaseException | None = None) -> None:
		super().__init__(self.reason)
		self.temp_id = temp_id
		self.cause = cause


class MessageSendFailed(MessagingError):
	"""The retry budget is exhausted; the message will not be retried automatically."""

	reason = "retries_exhausted"

	def __init__(self, temp_id: str, attempts: int, cause: BaseException | None = None) -> None:
		super().__init__(self.reason)
		self.temp_id = temp_id
		self.attempts = attempts
		self.cause = cause


class MessageNotFound(MessagingError):
	reason = "not_found"

	def __init__(self, temp_id: str) -> None:
		super().__init__(self.reason)
		self.temp_id = temp_id


class RealtimeError(Exception):
	"""Base class for realtime subscription errors."""

	reason: str = "unknown"
	terminal: bool = False

	def __init__(self, conversation_id: str, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		self.conversation_id = conversation_id
		if reason:
			self.reason = reason


class ConnectionIssue(RealtimeError):
	"""Transport failed; a reconnect is scheduled."""

	reason = "connection_issue"

	def __init__(self, conversation_id: str, attempt: int, cause: BaseException | None = None) -> None:
		super().__init__(conversation_id)
		self.attempt = attempt
		self.cause = cause


class SubscriptionAbandoned(RealtimeError):
	"""Reconnect budget exhausted; no further automatic attempts are made."""

	reason = "max_reconnect_attempts"
	terminal = True

	def __init__(self, conversation_id: str, attempts: int, cause: BaseException | None = None) -> None:
		super().__init__(conversation_id)
		self.attempts = attempts
		self.cause = cause


__all__ = [
	"BackendError",
	"BackendUnavailable",
	"ConnectionIssue",
	"MessageNotFound",
	"MessageQueuedForRetry",
	"MessageSendFailed",
	"MessageValidationError",
	"MessagingError",
	"RealtimeError",
	"SubscriptionAbandoned",
]
