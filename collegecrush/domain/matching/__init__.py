"""Matching domain exports."""

from .models import CompatibilityScore, MatchingVariant, Profile, ScoreBreakdown
from .preferences import PreferenceStore
from .schemas import AgeRange, MatchingPreferences
from .service import CompatibilityRanker

__all__ = [
	"AgeRange",
	"CompatibilityRanker",
	"CompatibilityScore",
	"MatchingPreferences",
	"MatchingVariant",
	"PreferenceStore",
	"Profile",
	"ScoreBreakdown",
]
