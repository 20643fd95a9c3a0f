"""Pydantic schemas for matching preferences."""

from __future__ import annotations

import json
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AgeRange(BaseModel):
	min: int = 18
	max: int = 25

	@property
	def midpoint(self) -> float:
		return (self.min + self.max) / 2

	def contains(self, age: int) -> bool:
		return self.min <= age <= self.max


class MatchingPreferences(BaseModel):
	"""User-owned ranking preferences.

	Stored with camelCase keys (``ageRange``, ``maxDistance``...) so payloads
	written by the web client load unchanged; snake_case is accepted too.
	"""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	age_range: AgeRange = Field(default_factory=AgeRange)
	max_distance: float = Field(default=50.0, description="Maximum distance in km")
	preferred_genders: List[str] = Field(default_factory=lambda: ["Male", "Female", "Other"])
	interests: List[str] = Field(default_factory=list)
	activity_weight: float = 0.3
	diversity_weight: float = 0.2
	compatibility_weight: float = 0.5

	def cache_token(self) -> str:
		"""Canonical serialisation used to build ranking cache keys."""
		return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

	def to_storage(self) -> str:
		return self.model_dump_json(by_alias=True)


def default_preferences() -> MatchingPreferences:
	return MatchingPreferences()


__all__ = ["AgeRange", "MatchingPreferences", "default_preferences"]
