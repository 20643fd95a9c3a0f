"""Per-session service container.

One ``CrushSession`` lives for one signed-in application session; nothing in
the core is a process-wide singleton, so tests (or a server hosting several
users) can run sessions side by side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import ulid

from collegecrush.domain.chat.backend import MessageBackend, RestMessageBackend
from collegecrush.domain.chat.messenger import DeliveredCallback, FailedCallback, ReliableMessenger
from collegecrush.domain.chat.realtime import RealtimeChannelManager
from collegecrush.domain.chat.transport import RealtimeTransport, RedisStreamTransport
from collegecrush.domain.matching.preferences import PreferenceStore
from collegecrush.domain.matching.service import CompatibilityRanker
from collegecrush.infra.redis import RedisProxy, redis_client
from collegecrush.obs import logging as obs_logging

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrushSession:
	user_id: str
	ranker: CompatibilityRanker
	preferences: PreferenceStore
	messenger: ReliableMessenger
	realtime: RealtimeChannelManager
	session_id: str = field(default_factory=lambda: str(ulid.new()))
	closed: bool = False

	async def close(self) -> None:
		"""Logout: drop pending retries, tear down every live subscription and
		release the message backend."""
		if self.closed:
			return
		self.closed = True
		tokens = obs_logging.bind_context(session_id=self.session_id, user_id=self.user_id)
		try:
			pending = self.messenger.get_pending_count()
			await self.messenger.clear_queue()
			await self.realtime.unsubscribe_all()
			aclose = getattr(self.messenger.backend, "aclose", None)
			if aclose is not None:
				await aclose()
			logger.info("session.closed", extra={"pending_dropped": pending})
		finally:
			obs_logging.reset_context(tokens)


def open_session(
	user_id: str,
	*,
	backend: Optional[MessageBackend] = None,
	transport: Optional[RealtimeTransport] = None,
	redis: RedisProxy | None = None,
	ranker: Optional[CompatibilityRanker] = None,
	on_delivered: Optional[DeliveredCallback] = None,
	on_failed: Optional[FailedCallback] = None,
) -> CrushSession:
	redis = redis if redis is not None else redis_client
	ranker = ranker if ranker is not None else CompatibilityRanker()
	session = CrushSession(
		user_id=user_id,
		ranker=ranker,
		preferences=PreferenceStore(ranker, redis=redis),
		messenger=ReliableMessenger(
			backend if backend is not None else RestMessageBackend(),
			on_delivered=on_delivered,
			on_failed=on_failed,
		),
		realtime=RealtimeChannelManager(transport if transport is not None else RedisStreamTransport(redis=redis)),
	)
	logger.info("session.opened", extra={"session_id": session.session_id, "user_id": user_id})
	return session


__all__ = ["CrushSession", "open_session"]
