"""Bounded TTL cache for ranked candidate orderings."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from collegecrush.obs import metrics as obs_metrics

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
	user_id: str
	candidate_ids: Tuple[str, ...]
	created_at: float


def make_key(user_id: str, preferences_token: str, variant: str) -> str:
	"""Hash the (user, preferences, variant) tuple into a cache key."""
	digest = hashlib.sha256(f"{preferences_token}\x1f{variant}".encode("utf-8")).hexdigest()
	return f"{user_id}:{digest}"


class RankingCache:
	"""At most one ordering per key, valid for ``ttl_seconds``.

	Entries are evicted lazily: expired entries disappear on lookup, and the
	whole cache is pruned once it grows past ``soft_limit``.
	"""

	def __init__(self, *, ttl_seconds: float = 300.0, soft_limit: int = 50, clock: Clock = time.monotonic) -> None:
		self.ttl_seconds = float(ttl_seconds)
		self.soft_limit = max(1, int(soft_limit))
		self._clock = clock
		self._entries: Dict[str, CacheEntry] = {}
		self._by_user: Dict[str, Set[str]] = {}

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, key: object) -> bool:
		return key in self._entries

	def _expired(self, entry: CacheEntry, now: float) -> bool:
		return (now - entry.created_at) >= self.ttl_seconds

	def get(self, key: str) -> Optional[Tuple[str, ...]]:
		entry = self._entries.get(key)
		if entry is None:
			return None
		if self._expired(entry, self._clock()):
			self._remove(key)
			obs_metrics.inc_cache_eviction("expired")
			return None
		return entry.candidate_ids

	def put(self, key: str, user_id: str, candidate_ids: Tuple[str, ...]) -> None:
		self._entries[key] = CacheEntry(user_id=user_id, candidate_ids=tuple(candidate_ids), created_at=self._clock())
		self._by_user.setdefault(user_id, set()).add(key)
		if len(self._entries) > self.soft_limit:
			self.prune()

	def prune(self) -> int:
		"""Drop expired entries, then the oldest ones while over the soft limit."""
		now = self._clock()
		expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
		for key in expired:
			self._remove(key)
		obs_metrics.inc_cache_eviction("expired", len(expired))
		overflow = len(self._entries) - self.soft_limit
		evicted = 0
		if overflow > 0:
			oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:overflow]
			for key, _ in oldest:
				self._remove(key)
				evicted += 1
			obs_metrics.inc_cache_eviction("overflow", evicted)
		return len(expired) + evicted

	def invalidate_user(self, user_id: str) -> int:
		keys = self._by_user.pop(user_id, set())
		for key in keys:
			self._entries.pop(key, None)
		obs_metrics.inc_cache_eviction("invalidated", len(keys))
		return len(keys)

	def clear(self) -> None:
		self._entries.clear()
		self._by_user.clear()

	def _remove(self, key: str) -> None:
		entry = self._entries.pop(key, None)
		if entry is None:
			return
		keys = self._by_user.get(entry.user_id)
		if keys is not None:
			keys.discard(key)
			if not keys:
				self._by_user.pop(entry.user_id, None)


__all__ = ["CacheEntry", "RankingCache", "make_key"]
