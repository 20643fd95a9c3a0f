"""Realtime message event transport backed by Redis streams.

Each conversation has its own stream (``x:chat.messages:{conversation_id}``)
carrying ``INSERT`` and ``UPDATE`` events with the message row flattened into
the entry fields.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from collegecrush.infra.redis import RedisProxy, redis_client
from collegecrush.settings import settings

logger = logging.getLogger(__name__)

STREAM_PREFIX = "x:chat.messages:"
EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"

EventCallback = Callable[["StreamEvent"], None]
ErrorCallback = Callable[[BaseException], None]
ReadyCallback = Callable[[], None]


def stream_name(conversation_id: str) -> str:
	return f"{STREAM_PREFIX}{conversation_id}"


@dataclass(slots=True)
class StreamEvent:
	id: str
	kind: str
	row: Dict[str, str]


@dataclass(slots=True)
class ChannelHandle:
	conversation_id: str
	last_id: str
	task: Optional[asyncio.Task] = field(default=None, repr=False)


class RealtimeTransport(Protocol):
	async def open(
		self,
		conversation_id: str,
		*,
		after_id: Optional[str],
		on_event: EventCallback,
		on_error: ErrorCallback,
		on_ready: Optional[ReadyCallback] = None,
	) -> Any:
		...

	async def close(self, handle: Any) -> None:
		...


def parse_event(entry_id: str, fields: Mapping[str, Any]) -> Optional[StreamEvent]:
	payload = {str(key): str(value) for key, value in fields.items()}
	kind = payload.pop("event", "").upper()
	if kind not in (EVENT_INSERT, EVENT_UPDATE):
		return None
	return StreamEvent(id=str(entry_id), kind=kind, row=payload)


class RedisStreamTransport:
	"""Polls a conversation stream and hands each entry to ``on_event``.

	``on_ready`` fires after the first successful read. A Redis failure while
	polling is reported once through ``on_error`` and ends the poll loop;
	reconnecting is the caller's decision.
	"""

	def __init__(
		self,
		*,
		redis: RedisProxy | None = None,
		poll_interval: Optional[float] = None,
		batch_size: Optional[int] = None,
	) -> None:
		self.redis = redis if redis is not None else redis_client
		self.poll_interval = float(poll_interval if poll_interval is not None else settings.realtime_poll_interval_seconds)
		self.batch_size = int(batch_size if batch_size is not None else settings.realtime_batch_size)

	async def open(
		self,
		conversation_id: str,
		*,
		after_id: Optional[str],
		on_event: EventCallback,
		on_error: ErrorCallback,
		on_ready: Optional[ReadyCallback] = None,
	) -> ChannelHandle:
		start_id = after_id or await self.redis.xlast_id(stream_name(conversation_id))
		handle = ChannelHandle(conversation_id=conversation_id, last_id=start_id)
		handle.task = asyncio.get_running_loop().create_task(
			self._poll(handle, on_event, on_error, on_ready),
			name=f"chat-realtime:{conversation_id}",
		)
		return handle

	async def close(self, handle: ChannelHandle) -> None:
		task = handle.task
		handle.task = None
		if task is None or task.done() or task is asyncio.current_task():
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task

	async def _poll(
		self,
		handle: ChannelHandle,
		on_event: EventCallback,
		on_error: ErrorCallback,
		on_ready: Optional[ReadyCallback],
	) -> None:
		stream = stream_name(handle.conversation_id)
		ready = False
		while True:
			try:
				response = await self.redis.xread({stream: handle.last_id}, count=self.batch_size)
			except asyncio.CancelledError:
				raise
			except Exception as exc:
				logger.warning("realtime.stream_read_failed", extra={"stream": stream, "error": repr(exc)})
				on_error(exc)
				return
			if not ready:
				# first successful read proves the connection is live
				ready = True
				if on_ready is not None:
					on_ready()
			if not response:
				await asyncio.sleep(self.poll_interval)
				continue
			for _stream, entries in response:
				for entry_id, fields in entries:
					handle.last_id = str(entry_id)
					event = parse_event(handle.last_id, fields)
					if event is None:
						continue
					on_event(event)


async def publish_message_event(
	conversation_id: str,
	event: str,
	row: Mapping[str, Any],
	*,
	redis: RedisProxy | None = None,
) -> str:
	"""Append a message event to the conversation stream and return its entry id."""
	fields: dict[str, str] = {"event": event.upper()}
	for key, value in row.items():
		if value is None:
			continue
		if isinstance(value, datetime):
			fields[key] = value.isoformat()
		elif isinstance(value, bool):
			fields[key] = "true" if value else "false"
		else:
			fields[key] = str(value)
	entry_id = await (redis if redis is not None else redis_client).xadd(stream_name(conversation_id), fields)
	return entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)


__all__ = [
	"ChannelHandle",
	"EVENT_INSERT",
	"EVENT_UPDATE",
	"RealtimeTransport",
	"RedisStreamTransport",
	"StreamEvent",
	"parse_event",
	"publish_message_event",
	"stream_name",
]
