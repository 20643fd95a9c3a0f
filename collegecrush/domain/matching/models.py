"""Domain models for candidate ranking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional, Tuple


class MatchingVariant(str, Enum):
	"""Named scoring formulas compared through A/B assignment."""

	CONTROL = "control"
	ADVANCED = "advanced"
	ML_INSPIRED = "ml-inspired"


@dataclass(slots=True)
class Profile:
	"""Read-only snapshot of a user profile as seen by the ranker.

	The ranking user and every candidate share this shape. Coordinates are
	missing only when ``None``; ``0.0`` is a valid latitude/longitude.
	"""

	id: str
	date_of_birth: Optional[date] = None
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	tags: Tuple[str, ...] = ()
	college: Optional[str] = None
	course: Optional[str] = None
	last_seen: Optional[datetime] = None
	gender: Optional[str] = None
	display_name: str = ""

	@property
	def has_location(self) -> bool:
		return self.latitude is not None and self.longitude is not None

	def age_on(self, today: date) -> Optional[int]:
		if self.date_of_birth is None:
			return None
		dob = self.date_of_birth
		years = today.year - dob.year
		if (today.month, today.day) < (dob.month, dob.day):
			years -= 1
		return years


@dataclass(slots=True)
class ScoreBreakdown:
	interests: float
	location: float
	age: float
	activity: float
	collaborative: float
	diversity: float

	def as_dict(self) -> Dict[str, float]:
		return {
			"interests": self.interests,
			"location": self.location,
			"age": self.age,
			"activity": self.activity,
			"collaborative": self.collaborative,
			"diversity": self.diversity,
		}


@dataclass(slots=True)
class CompatibilityScore:
	"""Combined score for one candidate together with its sub-scores."""

	profile: Profile
	score: float
	breakdown: ScoreBreakdown
	variant: MatchingVariant = field(default=MatchingVariant.ADVANCED)


__all__ = ["CompatibilityScore", "MatchingVariant", "Profile", "ScoreBreakdown"]
