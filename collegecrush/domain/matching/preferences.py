"""Local-first persistence for matching preferences."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Tuple

from pydantic import ValidationError

from collegecrush.domain.matching.models import MatchingVariant
from collegecrush.domain.matching.schemas import MatchingPreferences, default_preferences
from collegecrush.domain.matching.service import CompatibilityRanker
from collegecrush.infra.redis import RedisProxy, redis_client

logger = logging.getLogger(__name__)


class PreferenceStore:
	"""Reads and writes preferences keyed by user id.

	Saving or resetting always invalidates the ranker's cached orderings for
	that user, since the cache key embeds the old preferences.
	"""

	def __init__(
		self,
		ranker: CompatibilityRanker,
		*,
		redis: RedisProxy | None = None,
		namespace: str = "matching:prefs:",
	) -> None:
		self.ranker = ranker
		self.redis = redis if redis is not None else redis_client
		self.namespace = namespace

	def _key(self, user_id: str) -> str:
		return f"{self.namespace}{user_id}"

	async def load(self, user_id: str) -> MatchingPreferences:
		raw = await self.redis.get(self._key(user_id))
		if not raw:
			return default_preferences()
		try:
			if isinstance(raw, bytes):
				raw = raw.decode("utf-8")
			data = json.loads(raw)
		except (UnicodeDecodeError, json.JSONDecodeError):
			logger.warning("matching.preferences_unreadable", extra={"user_id": user_id})
			return default_preferences()
		if not isinstance(data, dict):
			logger.warning("matching.preferences_invalid_format", extra={"user_id": user_id})
			return default_preferences()
		return _merge(default_preferences(), data, user_id=user_id)

	async def load_with_variant(self, user_id: str) -> Tuple[MatchingPreferences, MatchingVariant]:
		preferences = await self.load(user_id)
		return preferences, self.ranker.assign_variant(user_id)

	async def save(self, user_id: str, changes: Mapping[str, Any] | MatchingPreferences) -> MatchingPreferences:
		current = await self.load(user_id)
		if isinstance(changes, MatchingPreferences):
			updated = changes
		else:
			updated = _merge(current, changes, user_id=user_id)
		await self.redis.set(self._key(user_id), updated.to_storage())
		self.ranker.invalidate_cache(user_id)
		return updated

	async def reset(self, user_id: str) -> MatchingPreferences:
		await self.redis.delete(self._key(user_id))
		self.ranker.invalidate_cache(user_id)
		return default_preferences()


def _merge(base: MatchingPreferences, changes: Mapping[str, Any], *, user_id: Optional[str] = None) -> MatchingPreferences:
	payload = base.model_dump(by_alias=True)
	for key, value in changes.items():
		field = MatchingPreferences.model_fields.get(key)
		alias = field.alias if field is not None and field.alias else key
		payload[alias] = value
	try:
		return MatchingPreferences.model_validate(payload)
	except ValidationError:
		logger.warning("matching.preferences_rejected", extra={"user_id": user_id})
		return base


__all__ = ["PreferenceStore"]
