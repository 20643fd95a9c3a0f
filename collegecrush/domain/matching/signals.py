"""In-memory collaborative and diversity signals.

Both trackers are per-session optimisations, not a source of truth: they live
only as long as the ranker that owns them.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List

from collegecrush.domain.matching.models import Profile

LIKED_BY_SIMILAR = 0.8
NOT_LIKED_BY_SIMILAR = 0.3
NO_SIGNAL = 0.5

_COLLEGE_PENALTY = 0.2
_COURSE_PENALTY = 0.2
_TAG_PENALTY_MAX = 0.3


@dataclass(slots=True)
class _SwipeHistory:
	swiped: Deque[str]
	liked: Deque[str]
	similar_users: List[str] = field(default_factory=list)


class CollaborativeSignals:
	"""Tracks swipes per user and derives "users who liked what you liked"."""

	def __init__(self, *, history_limit: int = 100, similar_limit: int = 10, min_shared_likes: int = 3) -> None:
		self.history_limit = max(1, int(history_limit))
		self.similar_limit = max(0, int(similar_limit))
		self.min_shared_likes = max(1, int(min_shared_likes))
		self._histories: Dict[str, _SwipeHistory] = {}

	def _history(self, user_id: str) -> _SwipeHistory:
		history = self._histories.get(user_id)
		if history is None:
			history = _SwipeHistory(
				swiped=deque(maxlen=self.history_limit),
				liked=deque(maxlen=self.history_limit),
			)
			self._histories[user_id] = history
		return history

	def record(self, user_id: str, candidate_id: str, liked: bool) -> None:
		history = self._history(user_id)
		history.swiped.append(candidate_id)
		if liked:
			history.liked.append(candidate_id)
		history.similar_users = self._compute_similar(user_id, history)

	def _compute_similar(self, user_id: str, history: _SwipeHistory) -> List[str]:
		mine = set(history.liked)
		if len(mine) < self.min_shared_likes:
			return []
		overlaps: List[tuple[int, str]] = []
		for other_id, other in self._histories.items():
			if other_id == user_id:
				continue
			shared = len(mine.intersection(other.liked))
			if shared >= self.min_shared_likes:
				overlaps.append((shared, other_id))
		overlaps.sort(key=lambda item: (-item[0], item[1]))
		return [other_id for _, other_id in overlaps[: self.similar_limit]]

	def similar_users(self, user_id: str) -> List[str]:
		history = self._histories.get(user_id)
		return list(history.similar_users) if history else []

	def swiped(self, user_id: str) -> List[str]:
		history = self._histories.get(user_id)
		return list(history.swiped) if history else []

	def liked(self, user_id: str) -> List[str]:
		history = self._histories.get(user_id)
		return list(history.liked) if history else []

	def score(self, user_id: str, candidate_id: str) -> float:
		history = self._histories.get(user_id)
		if history is None or not history.similar_users:
			return NO_SIGNAL
		for other_id in history.similar_users:
			other = self._histories.get(other_id)
			if other is not None and candidate_id in other.liked:
				return LIKED_BY_SIMILAR
		return NOT_LIKED_BY_SIMILAR


@dataclass(slots=True)
class _RecentlyShown:
	colleges: Deque[str]
	courses: Deque[str]
	tags: Deque[str]


class DiversityTracker:
	"""Remembers the last few colleges, courses and tags shown to each user."""

	def __init__(self, *, window: int = 10) -> None:
		self.window = max(1, int(window))
		self._recent: Dict[str, _RecentlyShown] = {}

	def record(self, user_id: str, shown: Profile) -> None:
		recent = self._recent.get(user_id)
		if recent is None:
			recent = _RecentlyShown(
				colleges=deque(maxlen=self.window),
				courses=deque(maxlen=self.window),
				tags=deque(maxlen=self.window),
			)
			self._recent[user_id] = recent
		if shown.college:
			recent.colleges.append(shown.college)
		if shown.course:
			recent.courses.append(shown.course)
		recent.tags.extend(shown.tags or ())

	def score(self, user_id: str, candidate: Profile) -> float:
		recent = self._recent.get(user_id)
		if recent is None:
			return 1.0
		penalty = 0.0
		if candidate.college and candidate.college in recent.colleges:
			penalty += _COLLEGE_PENALTY
		if candidate.course and candidate.course in recent.courses:
			penalty += _COURSE_PENALTY
		tags = list(candidate.tags or ())
		if tags:
			recent_tags = set(recent.tags)
			shared = sum(1 for tag in tags if tag in recent_tags)
			penalty += (shared / len(tags)) * _TAG_PENALTY_MAX
		return max(0.0, 1.0 - penalty)

	def recent_colleges(self, user_id: str) -> List[str]:
		recent = self._recent.get(user_id)
		return list(recent.colleges) if recent else []

	def recent_tags(self, user_id: str) -> List[str]:
		recent = self._recent.get(user_id)
		return list(recent.tags) if recent else []


__all__ = ["CollaborativeSignals", "DiversityTracker"]
