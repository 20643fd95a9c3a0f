"""Live subscriptions to conversation message streams with bounded reconnects."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from collegecrush.obs import metrics as obs_metrics
from collegecrush.settings import settings

from .exceptions import ConnectionIssue, RealtimeError, SubscriptionAbandoned
from .models import Message
from .schemas import normalize_message
from .transport import EVENT_INSERT, EVENT_UPDATE, RealtimeTransport, StreamEvent

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Any]
ErrorCallback = Callable[[RealtimeError], Any]
Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]


class SubscriptionState(str, Enum):
	UNSUBSCRIBED = "unsubscribed"
	SUBSCRIBING = "subscribing"
	SUBSCRIBED = "subscribed"
	RECONNECTING = "reconnecting"
	ABANDONED = "abandoned"


@dataclass(slots=True)
class ChannelSubscription:
	"""Per-conversation subscription state; owns its own reconnect budget."""

	conversation_id: str
	on_insert: MessageCallback
	on_update: MessageCallback
	on_error: Optional[ErrorCallback] = None
	state: SubscriptionState = SubscriptionState.UNSUBSCRIBED
	attempts: int = 0
	last_event_id: Optional[str] = None
	last_issue_notice: Optional[float] = None
	handle: Any = field(default=None, repr=False)
	reconnect_task: Optional[asyncio.Task] = field(default=None, repr=False)


def _stream_position(entry_id: str) -> Tuple[int, int]:
	ms, _, seq = entry_id.partition("-")
	try:
		return int(ms), int(seq or 0)
	except ValueError:
		return (0, 0)


class RealtimeChannelManager:
	"""Keeps at most one live subscription per conversation.

	Transport failures trigger a reconnect after ``reconnect_delay * attempt``
	seconds. Once ``max_attempts`` reconnects have failed the subscription is
	abandoned and ``on_error`` receives :class:`SubscriptionAbandoned`. While
	retries continue, ``on_error`` receives a :class:`ConnectionIssue` at most
	once per ``issue_notice_interval`` seconds. The attempt counter resets
	when the transport reports its first successful read, not when ``open``
	returns.
	"""

	def __init__(
		self,
		transport: RealtimeTransport,
		*,
		reconnect_delay: Optional[float] = None,
		max_attempts: Optional[int] = None,
		issue_notice_interval: Optional[float] = None,
		sleep: Sleep = asyncio.sleep,
		clock: Clock = time.monotonic,
	) -> None:
		self.transport = transport
		self.reconnect_delay = float(reconnect_delay if reconnect_delay is not None else settings.realtime_reconnect_delay_seconds)
		self.max_attempts = int(max_attempts if max_attempts is not None else settings.realtime_max_reconnect_attempts)
		self.issue_notice_interval = float(
			issue_notice_interval if issue_notice_interval is not None else settings.realtime_issue_notice_interval_seconds
		)
		self._sleep = sleep
		self._clock = clock
		self._subscriptions: Dict[str, ChannelSubscription] = {}
		self._background: set[asyncio.Future] = set()

	def subscription(self, conversation_id: str) -> Optional[ChannelSubscription]:
		return self._subscriptions.get(conversation_id)

	@property
	def active_count(self) -> int:
		return len(self._subscriptions)

	async def subscribe(
		self,
		conversation_id: str,
		on_insert: MessageCallback,
		on_update: MessageCallback,
		on_error: Optional[ErrorCallback] = None,
	) -> ChannelSubscription:
		await self.unsubscribe(conversation_id)
		sub = ChannelSubscription(
			conversation_id=conversation_id,
			on_insert=on_insert,
			on_update=on_update,
			on_error=on_error,
		)
		self._subscriptions[conversation_id] = sub
		await self._connect(sub)
		return sub

	async def unsubscribe(self, conversation_id: str) -> None:
		sub = self._subscriptions.pop(conversation_id, None)
		if sub is None:
			return
		sub.state = SubscriptionState.UNSUBSCRIBED
		task = sub.reconnect_task
		sub.reconnect_task = None
		if task is not None and task is not asyncio.current_task() and not task.done():
			task.cancel()
			with suppress(asyncio.CancelledError):
				await task
		await self._release(sub)
		logger.debug("realtime.unsubscribed", extra={"conversation_id": conversation_id})

	async def unsubscribe_all(self) -> None:
		for conversation_id in list(self._subscriptions):
			await self.unsubscribe(conversation_id)

	# -- connection lifecycle --------------------------------------------

	def _is_current(self, sub: ChannelSubscription) -> bool:
		return self._subscriptions.get(sub.conversation_id) is sub

	async def _connect(self, sub: ChannelSubscription) -> None:
		sub.state = SubscriptionState.SUBSCRIBING
		try:
			handle = await self.transport.open(
				sub.conversation_id,
				after_id=sub.last_event_id,
				on_event=lambda event: self._dispatch(sub, event),
				on_error=lambda exc: self._transport_failed(sub, exc),
				on_ready=lambda: self._mark_live(sub),
			)
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			logger.warning(
				"realtime.subscribe_failed",
				extra={"conversation_id": sub.conversation_id, "attempts": sub.attempts, "error": repr(exc)},
			)
			self._transport_failed(sub, exc)
			return
		if not self._is_current(sub) or sub.state != SubscriptionState.SUBSCRIBING:
			await self.transport.close(handle)
			return
		sub.handle = handle
		sub.state = SubscriptionState.SUBSCRIBED
		obs_metrics.realtime_subscribed()
		logger.info("realtime.subscribed", extra={"conversation_id": sub.conversation_id})

	def _mark_live(self, sub: ChannelSubscription) -> None:
		# only a successful transport read restores the reconnect budget
		if not self._is_current(sub) or sub.state not in (SubscriptionState.SUBSCRIBING, SubscriptionState.SUBSCRIBED):
			return
		if sub.attempts:
			logger.info(
				"realtime.reconnected",
				extra={"conversation_id": sub.conversation_id, "attempts": sub.attempts},
			)
			obs_metrics.inc_realtime_reconnect("recovered")
		sub.attempts = 0

	async def _release(self, sub: ChannelSubscription) -> None:
		handle = sub.handle
		sub.handle = None
		if handle is None:
			return
		obs_metrics.realtime_unsubscribed()
		try:
			await self.transport.close(handle)
		except Exception:
			logger.warning("realtime.close_failed", extra={"conversation_id": sub.conversation_id}, exc_info=True)

	def _transport_failed(self, sub: ChannelSubscription, exc: BaseException) -> None:
		if not self._is_current(sub):
			return
		if sub.state in (SubscriptionState.RECONNECTING, SubscriptionState.ABANDONED):
			return
		if sub.attempts >= self.max_attempts:
			self._abandon(sub, exc)
			return
		sub.attempts += 1
		sub.state = SubscriptionState.RECONNECTING
		delay = self.reconnect_delay * sub.attempts
		obs_metrics.inc_realtime_reconnect("scheduled")
		logger.info(
			"realtime.reconnect_scheduled",
			extra={
				"conversation_id": sub.conversation_id,
				"attempt": sub.attempts,
				"max_attempts": self.max_attempts,
				"delay_seconds": delay,
			},
		)
		now = self._clock()
		if sub.last_issue_notice is None or (now - sub.last_issue_notice) >= self.issue_notice_interval:
			sub.last_issue_notice = now
			self._invoke(sub.on_error, ConnectionIssue(sub.conversation_id, sub.attempts, exc))
		sub.reconnect_task = asyncio.get_running_loop().create_task(
			self._reconnect_later(sub, delay),
			name=f"chat-realtime-reconnect:{sub.conversation_id}",
		)

	async def _reconnect_later(self, sub: ChannelSubscription, delay: float) -> None:
		await self._release(sub)
		await self._sleep(delay)
		if not self._is_current(sub) or sub.state != SubscriptionState.RECONNECTING:
			return
		sub.reconnect_task = None
		await self._connect(sub)

	def _abandon(self, sub: ChannelSubscription, exc: BaseException) -> None:
		sub.state = SubscriptionState.ABANDONED
		self._subscriptions.pop(sub.conversation_id, None)
		if sub.handle is not None:
			self._track(asyncio.ensure_future(self._release(sub)))
		obs_metrics.inc_realtime_reconnect("abandoned")
		logger.error(
			"realtime.subscription_abandoned",
			extra={"conversation_id": sub.conversation_id, "attempts": sub.attempts},
		)
		self._invoke(sub.on_error, SubscriptionAbandoned(sub.conversation_id, sub.attempts, exc))

	# -- event delivery ---------------------------------------------------

	def _dispatch(self, sub: ChannelSubscription, event: StreamEvent) -> None:
		if not self._is_current(sub) or sub.state != SubscriptionState.SUBSCRIBED:
			return
		if sub.last_event_id is not None and _stream_position(event.id) <= _stream_position(sub.last_event_id):
			return
		sub.last_event_id = event.id
		if event.kind == EVENT_INSERT:
			callback = sub.on_insert
		elif event.kind == EVENT_UPDATE:
			callback = sub.on_update
		else:
			return
		try:
			message = normalize_message(event.row)
		except ValidationError:
			logger.warning(
				"realtime.event_malformed",
				extra={"conversation_id": sub.conversation_id, "event_id": event.id},
			)
			return
		obs_metrics.inc_realtime_event(event.kind.lower())
		self._invoke(callback, message)

	def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
		if callback is None:
			return
		try:
			result = callback(*args)
			if inspect.isawaitable(result):
				self._track(asyncio.ensure_future(result))
		except Exception:
			logger.exception("realtime.callback_failed")

	def _track(self, future: asyncio.Future) -> None:
		self._background.add(future)
		future.add_done_callback(self._background_done)

	def _background_done(self, future: asyncio.Future) -> None:
		self._background.discard(future)
		if future.cancelled():
			return
		exc = future.exception()
		if exc is not None:
			logger.error("realtime.callback_failed", exc_info=(type(exc), exc, exc.__traceback__))


__all__ = ["ChannelSubscription", "RealtimeChannelManager", "SubscriptionState"]
