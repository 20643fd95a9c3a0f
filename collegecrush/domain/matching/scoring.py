"""Sub-score functions and variant combination for candidate ranking.

Every function here is total over partial profiles: a missing input yields
the neutral score instead of an error.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Mapping

from collegecrush.domain.matching.models import MatchingVariant, Profile, ScoreBreakdown
from collegecrush.domain.matching.schemas import MatchingPreferences

NEUTRAL_SCORE = 0.5
EARTH_RADIUS_KM = 6371.0
# Lowest score an in-range age can receive (at either bound of the range)
AGE_IN_RANGE_FLOOR = 0.1

# (hours since last seen, score), first matching threshold wins
_ACTIVITY_STEPS = (
	(24.0, 1.0),
	(168.0, 0.7),
	(720.0, 0.4),
)
_ACTIVITY_STALE = 0.1

ML_INSPIRED_WEIGHTS: Mapping[str, float] = {
	"interests": 0.2,
	"location": 0.2,
	"age": 0.1,
	"activity": 0.2,
	"collaborative": 0.4,
	"diversity": 0.1,
}

ADVANCED_FIXED_WEIGHTS: Mapping[str, float] = {
	"location": 0.3,
	"age": 0.2,
	"collaborative": 0.1,
}


def clamp01(value: float) -> float:
	return max(0.0, min(1.0, float(value)))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Great-circle distance between two points in kilometres."""
	d_lat = math.radians(lat2 - lat1)
	d_lon = math.radians(lon2 - lon1)
	a = (
		math.sin(d_lat / 2) ** 2
		+ math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
	)
	c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
	return EARTH_RADIUS_KM * c


def interest_score(user: Profile, candidate: Profile) -> float:
	"""Jaccard similarity of the two tag sets."""
	user_tags = set(user.tags or ())
	candidate_tags = set(candidate.tags or ())
	if not user_tags or not candidate_tags:
		return NEUTRAL_SCORE
	union = user_tags | candidate_tags
	return len(user_tags & candidate_tags) / len(union)


def location_score(user: Profile, candidate: Profile, preferences: MatchingPreferences) -> float:
	if not user.has_location or not candidate.has_location:
		return NEUTRAL_SCORE
	distance = haversine_km(user.latitude, user.longitude, candidate.latitude, candidate.longitude)
	max_distance = float(preferences.max_distance)
	if max_distance <= 0:
		return 1.0 if distance == 0 else 0.0
	if distance >= max_distance:
		return 0.0
	return clamp01(1 - distance / max_distance)


def age_score(candidate: Profile, preferences: MatchingPreferences, today: date) -> float:
	age = candidate.age_on(today)
	if age is None:
		return NEUTRAL_SCORE
	age_range = preferences.age_range
	if not age_range.contains(age):
		return 0.0
	half_range = (age_range.max - age_range.min) / 2
	if half_range <= 0:
		return 1.0
	closeness = 1 - abs(age - age_range.midpoint) / half_range
	return clamp01(AGE_IN_RANGE_FLOOR + (1 - AGE_IN_RANGE_FLOOR) * closeness)


def activity_score(candidate: Profile, now: datetime) -> float:
	last_seen = candidate.last_seen
	if last_seen is None:
		return NEUTRAL_SCORE
	if last_seen.tzinfo is None:
		last_seen = last_seen.replace(tzinfo=timezone.utc)
	hours = (now - last_seen).total_seconds() / 3600.0
	for threshold, score in _ACTIVITY_STEPS:
		if hours < threshold:
			return score
	return _ACTIVITY_STALE


def combine(breakdown: ScoreBreakdown, preferences: MatchingPreferences, variant: MatchingVariant) -> float:
	"""Fold sub-scores into a single value in [0, 1] according to the variant."""
	if variant == MatchingVariant.CONTROL:
		score = (breakdown.interests + breakdown.location + breakdown.age) / 3
	elif variant == MatchingVariant.ML_INSPIRED:
		parts = breakdown.as_dict()
		score = sum(parts[name] * weight for name, weight in ML_INSPIRED_WEIGHTS.items())
	else:
		score = (
			breakdown.interests * preferences.compatibility_weight
			+ breakdown.location * ADVANCED_FIXED_WEIGHTS["location"]
			+ breakdown.age * ADVANCED_FIXED_WEIGHTS["age"]
			+ breakdown.activity * preferences.activity_weight
			+ breakdown.collaborative * ADVANCED_FIXED_WEIGHTS["collaborative"]
			+ breakdown.diversity * preferences.diversity_weight
		)
	return clamp01(score)


__all__ = [
	"AGE_IN_RANGE_FLOOR",
	"NEUTRAL_SCORE",
	"activity_score",
	"age_score",
	"clamp01",
	"combine",
	"haversine_km",
	"interest_score",
	"location_score",
]
