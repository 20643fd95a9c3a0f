"""Compatibility ranking of candidate profiles."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from time import perf_counter
from typing import Callable, Dict, List, Optional, Sequence

from collegecrush.domain.matching import scoring
from collegecrush.domain.matching.cache import RankingCache, make_key
from collegecrush.domain.matching.models import CompatibilityScore, MatchingVariant, Profile, ScoreBreakdown
from collegecrush.domain.matching.schemas import MatchingPreferences, default_preferences
from collegecrush.domain.matching.signals import CollaborativeSignals, DiversityTracker
from collegecrush.domain.matching.variants import assign_variant
from collegecrush.obs import metrics as obs_metrics
from collegecrush.settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class CompatibilityRanker:
	"""Scores candidates against a user's preferences and caches the ordering.

	Ranking is synchronous CPU work bounded by ``max_candidates``; it never
	raises on partial profiles. Collaborative and diversity signals are kept
	in memory for the lifetime of the ranker.
	"""

	def __init__(
		self,
		*,
		cache: Optional[RankingCache] = None,
		collaborative: Optional[CollaborativeSignals] = None,
		diversity: Optional[DiversityTracker] = None,
		max_candidates: Optional[int] = None,
		tie_epsilon: Optional[float] = None,
		now: Callable[[], datetime] = _utcnow,
		rng: Optional[random.Random] = None,
	) -> None:
		self.cache = cache if cache is not None else RankingCache(
			ttl_seconds=settings.matching_cache_ttl_seconds,
			soft_limit=settings.matching_cache_soft_limit,
			clock=time.monotonic,
		)
		self.collaborative = collaborative if collaborative is not None else CollaborativeSignals(
			history_limit=settings.matching_history_limit,
			similar_limit=settings.matching_similar_users_limit,
			min_shared_likes=settings.matching_min_shared_likes,
		)
		self.diversity = diversity if diversity is not None else DiversityTracker(window=settings.matching_diversity_window)
		self.max_candidates = int(max_candidates if max_candidates is not None else settings.matching_max_candidates)
		self.tie_epsilon = float(tie_epsilon if tie_epsilon is not None else settings.matching_tie_epsilon)
		self._now = now
		self._rng = rng or random.Random()

	@staticmethod
	def default_preferences() -> MatchingPreferences:
		return default_preferences()

	@staticmethod
	def assign_variant(user_id: str) -> MatchingVariant:
		return assign_variant(user_id)

	def score(
		self,
		user: Profile,
		candidate: Profile,
		preferences: MatchingPreferences,
		variant: MatchingVariant | str = MatchingVariant.ADVANCED,
	) -> CompatibilityScore:
		variant = _coerce_variant(variant)
		now = self._now()
		breakdown = ScoreBreakdown(
			interests=scoring.interest_score(user, candidate),
			location=scoring.location_score(user, candidate, preferences),
			age=scoring.age_score(candidate, preferences, now.date()),
			activity=scoring.activity_score(candidate, now),
			collaborative=self.collaborative.score(user.id, candidate.id),
			diversity=self.diversity.score(user.id, candidate),
		)
		return CompatibilityScore(
			profile=candidate,
			score=scoring.combine(breakdown, preferences, variant),
			breakdown=breakdown,
			variant=variant,
		)

	def rank_candidates(
		self,
		user: Profile,
		candidates: Sequence[Profile],
		preferences: MatchingPreferences,
		variant: MatchingVariant | str = MatchingVariant.ADVANCED,
	) -> List[Profile]:
		"""Return candidates ordered by descending compatibility.

		Only the first ``max_candidates`` entries are scored. Identical
		(user, preferences, variant) requests within the cache TTL reuse the
		stored ordering without rescoring.
		"""
		variant = _coerce_variant(variant)
		key = make_key(user.id, preferences.cache_token(), variant.value)
		working = list(candidates[: self.max_candidates]) if self.max_candidates > 0 else []

		cached_ids = self.cache.get(key)
		if cached_ids is not None:
			by_id: Dict[str, Profile] = {profile.id: profile for profile in working}
			obs_metrics.observe_rank(variant.value, cached=True)
			return [by_id[candidate_id] for candidate_id in cached_ids if candidate_id in by_id]

		start = perf_counter()
		scored = [self.score(user, candidate, preferences, variant) for candidate in working]
		ordered = self._order(scored)
		elapsed_ms = (perf_counter() - start) * 1000.0
		if len(candidates) > len(working):
			logger.debug(
				"matching.rank_truncated",
				extra={"supplied": len(candidates), "scored": len(working)},
			)
		self.cache.put(key, user.id, tuple(item.profile.id for item in ordered))
		obs_metrics.observe_rank(variant.value, cached=False, candidates=len(working), elapsed_ms=elapsed_ms)
		return [item.profile for item in ordered]

	def _order(self, scored: List[CompatibilityScore]) -> List[CompatibilityScore]:
		# Near-equal scores are shuffled so the same candidates do not always lead.
		scored = sorted(scored, key=lambda item: item.score, reverse=True)
		ordered: List[CompatibilityScore] = []
		group: List[CompatibilityScore] = []
		for item in scored:
			if group and abs(group[-1].score - item.score) >= self.tie_epsilon:
				self._rng.shuffle(group)
				ordered.extend(group)
				group = []
			group.append(item)
		self._rng.shuffle(group)
		ordered.extend(group)
		return ordered

	def record_outcome(self, user_id: str, candidate_id: str, liked: bool) -> None:
		self.collaborative.record(user_id, candidate_id, bool(liked))

	def record_diversity(self, user_id: str, candidate_shown: Profile) -> None:
		self.diversity.record(user_id, candidate_shown)

	def invalidate_cache(self, user_id: str) -> int:
		removed = self.cache.invalidate_user(user_id)
		if removed:
			logger.debug("matching.cache_invalidated", extra={"user_id": user_id, "entries": removed})
		return removed


def _coerce_variant(variant: MatchingVariant | str) -> MatchingVariant:
	if isinstance(variant, MatchingVariant):
		return variant
	try:
		return MatchingVariant(str(variant))
	except ValueError:
		logger.warning("matching.unknown_variant", extra={"variant": str(variant)})
		return MatchingVariant.ADVANCED


__all__ = ["CompatibilityRanker"]
