"""Outbound chat delivery with an immediate attempt and a background retry queue."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import OrderedDict
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

import ulid

from collegecrush.obs import metrics as obs_metrics
from collegecrush.settings import settings

from .backend import MessageBackend
from .exceptions import (
	BackendUnavailable,
	MessageNotFound,
	MessageQueuedForRetry,
	MessageSendFailed,
	MessageValidationError,
)
from .models import DeliveryState, Message, OutboundMessage

logger = logging.getLogger(__name__)

DeliveredCallback = Callable[[str, Message], Any]
FailedCallback = Callable[[str, MessageSendFailed], Any]
Sleep = Callable[[float], Awaitable[Any]]

_DELIVERED_MEMORY = 200
_FAILED_MEMORY = 200


def new_temp_id() -> str:
	return f"temp-{ulid.new()}"


class ReliableMessenger:
	"""Sends messages with at-least-once semantics from the sender's point of view.

	``send`` makes exactly one inline attempt. A failed attempt parks the
	message in the retry queue and raises :class:`MessageQueuedForRetry` so the
	UI can render it as pending. The worker drains the queue every
	``retry_interval`` seconds while the backend probe succeeds; a message that
	fails ``max_retries`` retry attempts moves to ``failed`` and ``on_failed``
	is called. The newest ``failed_limit`` failed messages stay available to
	:meth:`resend`.
	"""

	def __init__(
		self,
		backend: MessageBackend,
		*,
		retry_interval: Optional[float] = None,
		max_retries: Optional[int] = None,
		on_delivered: Optional[DeliveredCallback] = None,
		on_failed: Optional[FailedCallback] = None,
		sleep: Sleep = asyncio.sleep,
		temp_id_factory: Callable[[], str] = new_temp_id,
		autostart: bool = True,
		failed_limit: int = _FAILED_MEMORY,
	) -> None:
		self.backend = backend
		self.retry_interval = float(retry_interval if retry_interval is not None else settings.messaging_retry_interval_seconds)
		self.max_retries = int(max_retries if max_retries is not None else settings.messaging_max_retries)
		self.on_delivered = on_delivered
		self.on_failed = on_failed
		self._sleep = sleep
		self._temp_id_factory = temp_id_factory
		self._autostart = autostart
		self.failed_limit = max(1, int(failed_limit))
		self._queue: Dict[str, OutboundMessage] = {}
		self._failed: "OrderedDict[str, OutboundMessage]" = OrderedDict()
		self._delivered: "OrderedDict[str, Message]" = OrderedDict()
		self._task: Optional[asyncio.Task] = None
		self._callback_tasks: set[asyncio.Future] = set()
		self._running = False

	# -- public API -------------------------------------------------------

	async def send(self, conversation_id: str, text: str, sender_id: str) -> Message:
		if not text or not text.strip():
			raise MessageValidationError()
		outbound = OutboundMessage(
			temp_id=self._temp_id_factory(),
			conversation_id=conversation_id,
			text=text,
			sender_id=sender_id,
		)
		try:
			message = await self._attempt(outbound, probe=True)
		except Exception as exc:
			self._enqueue(outbound, exc)
			raise MessageQueuedForRetry(outbound.temp_id, exc) from exc
		self._confirm(outbound, message, notify=False)
		obs_metrics.inc_chat_send("sent")
		return message

	async def resend(self, temp_id: str) -> Message:
		"""Retry a queued or failed message now.

		Idempotent: resending a message that was already confirmed returns the
		confirmed copy without another insert.
		"""
		confirmed = self._delivered.get(temp_id)
		if confirmed is not None:
			return confirmed
		outbound = self._queue.get(temp_id) or self._failed.get(temp_id)
		if outbound is None:
			raise MessageNotFound(temp_id)
		if outbound.in_flight:
			raise MessageQueuedForRetry(temp_id)
		if outbound.state == DeliveryState.FAILED:
			self._failed.pop(temp_id, None)
			outbound.attempts = 0
		try:
			message = await self._attempt(outbound, probe=True)
		except Exception as exc:
			self._enqueue(outbound, exc)
			raise MessageQueuedForRetry(temp_id, exc) from exc
		self._queue.pop(temp_id, None)
		self._confirm(outbound, message, notify=True)
		obs_metrics.inc_chat_send("retried")
		return message

	def get_pending_count(self) -> int:
		return len(self._queue)

	def pending(self) -> List[OutboundMessage]:
		return list(self._queue.values())

	def failed(self) -> List[OutboundMessage]:
		return list(self._failed.values())

	def status(self, temp_id: str) -> Optional[DeliveryState]:
		if temp_id in self._delivered:
			return DeliveryState.SENT
		if temp_id in self._queue:
			return self._queue[temp_id].state
		if temp_id in self._failed:
			return DeliveryState.FAILED
		return None

	async def clear_queue(self) -> None:
		"""Drop every pending retry and stop the worker (logout)."""
		dropped = len(self._queue)
		self._queue.clear()
		self._failed.clear()
		obs_metrics.set_retry_queue_depth(0)
		if dropped:
			logger.info("messaging.queue_cleared", extra={"dropped": dropped})
		await self.stop()

	# -- worker -----------------------------------------------------------

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running:
			return
		self._running = True
		self._task = asyncio.get_running_loop().create_task(self.run_forever(), name="messaging-retry-worker")

	async def stop(self) -> None:
		self._running = False
		task = self._task
		self._task = None
		if task is None or task is asyncio.current_task():
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			await self._sleep(self.retry_interval)
			if not self._running:
				break
			try:
				await self.process_once()
			except asyncio.CancelledError:
				raise
			except Exception:  # pragma: no cover
				logger.exception("messaging.retry_tick_failed")

	async def process_once(self) -> int:
		"""Run one retry tick and return how many messages were confirmed."""
		if not self._queue:
			return 0
		if not await self._probe():
			obs_metrics.inc_retry_tick("offline")
			logger.debug("messaging.retry_skipped_offline", extra={"pending": len(self._queue)})
			return 0
		delivered = 0
		for temp_id, outbound in list(self._queue.items()):
			if temp_id not in self._queue or outbound.in_flight:
				continue
			try:
				message = await self._attempt(outbound, probe=False)
			except Exception as exc:
				if temp_id not in self._queue:
					continue
				outbound.attempts += 1
				outbound.last_error = exc
				logger.info(
					"messaging.retry_failed",
					extra={"temp_id": temp_id, "attempts": outbound.attempts, "max_retries": self.max_retries},
				)
				if outbound.attempts >= self.max_retries:
					self._give_up(outbound)
				continue
			self._queue.pop(temp_id, None)
			self._confirm(outbound, message, notify=True)
			obs_metrics.inc_chat_send("retried")
			delivered += 1
		obs_metrics.inc_retry_tick("drained" if not self._queue else "partial")
		obs_metrics.set_retry_queue_depth(len(self._queue))
		return delivered

	# -- internals --------------------------------------------------------

	async def _probe(self) -> bool:
		try:
			return bool(await self.backend.probe())
		except Exception:
			logger.debug("messaging.probe_error", exc_info=True)
			return False

	async def _attempt(self, outbound: OutboundMessage, *, probe: bool) -> Message:
		outbound.in_flight = True
		try:
			if probe and not await self._probe():
				raise BackendUnavailable("no_connection")
			return await self.backend.insert_message(outbound.conversation_id, outbound.text, outbound.sender_id)
		finally:
			outbound.in_flight = False

	def _enqueue(self, outbound: OutboundMessage, exc: BaseException) -> None:
		outbound.state = DeliveryState.QUEUED
		outbound.last_error = exc
		self._queue[outbound.temp_id] = outbound
		obs_metrics.inc_chat_send("queued")
		obs_metrics.set_retry_queue_depth(len(self._queue))
		logger.warning(
			"messaging.queued_for_retry",
			extra={"temp_id": outbound.temp_id, "conversation_id": outbound.conversation_id, "error": repr(exc)},
		)
		if self._autostart:
			self.start()

	def _confirm(self, outbound: OutboundMessage, message: Message, *, notify: bool) -> None:
		outbound.state = DeliveryState.SENT
		outbound.message = message
		outbound.last_error = None
		self._delivered[outbound.temp_id] = message
		while len(self._delivered) > _DELIVERED_MEMORY:
			self._delivered.popitem(last=False)
		if notify:
			logger.info(
				"messaging.retry_succeeded",
				extra={"temp_id": outbound.temp_id, "message_id": message.id, "attempts": outbound.attempts},
			)
			self._notify(self.on_delivered, outbound.temp_id, message)

	def _give_up(self, outbound: OutboundMessage) -> None:
		self._queue.pop(outbound.temp_id, None)
		outbound.state = DeliveryState.FAILED
		self._failed[outbound.temp_id] = outbound
		while len(self._failed) > self.failed_limit:
			dropped_id, _ = self._failed.popitem(last=False)
			logger.warning("messaging.failed_evicted", extra={"temp_id": dropped_id})
		error = MessageSendFailed(outbound.temp_id, outbound.attempts, outbound.last_error)
		obs_metrics.inc_chat_send("failed")
		logger.error(
			"messaging.retries_exhausted",
			extra={"temp_id": outbound.temp_id, "conversation_id": outbound.conversation_id, "attempts": outbound.attempts},
		)
		self._notify(self.on_failed, outbound.temp_id, error)

	def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
		if callback is None:
			return
		try:
			result = callback(*args)
			if inspect.isawaitable(result):
				future = asyncio.ensure_future(result)
				self._callback_tasks.add(future)
				future.add_done_callback(self._callback_done)
		except Exception:
			logger.exception("messaging.callback_failed")

	def _callback_done(self, future: asyncio.Future) -> None:
		self._callback_tasks.discard(future)
		if future.cancelled():
			return
		exc = future.exception()
		if exc is not None:
			logger.error("messaging.callback_failed", exc_info=(type(exc), exc, exc.__traceback__))


__all__ = ["ReliableMessenger", "new_temp_id"]
