import math
from datetime import date, datetime, timedelta, timezone

import pytest

from collegecrush.domain.matching import scoring
from collegecrush.domain.matching.models import MatchingVariant, Profile, ScoreBreakdown
from collegecrush.domain.matching.schemas import AgeRange, MatchingPreferences
from collegecrush.domain.matching.service import CompatibilityRanker

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _dob(age: int) -> date:
	return date(TODAY.year - age, 1, 1)


def _north_of_origin(km: float) -> float:
	"""Latitude (degrees) of a point ``km`` due north of (0, 0)."""
	return math.degrees(km / scoring.EARTH_RADIUS_KM)


def _prefs(**overrides) -> MatchingPreferences:
	base = {
		"age_range": AgeRange(min=18, max=25),
		"max_distance": 50,
		"activity_weight": 0.3,
		"diversity_weight": 0.2,
		"compatibility_weight": 0.5,
	}
	base.update(overrides)
	return MatchingPreferences(**base)


def test_interest_score_is_jaccard():
	user = Profile(id="u", tags=("music", "coding"))
	candidate = Profile(id="c", tags=("coding", "sports"))
	assert scoring.interest_score(user, candidate) == pytest.approx(1 / 3)


def test_interest_score_neutral_when_either_side_has_no_tags():
	assert scoring.interest_score(Profile(id="u"), Profile(id="c", tags=("x",))) == 0.5
	assert scoring.interest_score(Profile(id="u", tags=("x",)), Profile(id="c")) == 0.5


def test_location_score_boundaries():
	prefs = _prefs(max_distance=50)
	user = Profile(id="u", latitude=0.0, longitude=0.0)
	same_spot = Profile(id="c", latitude=0.0, longitude=0.0)
	at_limit = Profile(id="c", latitude=_north_of_origin(50), longitude=0.0)
	beyond = Profile(id="c", latitude=_north_of_origin(80), longitude=0.0)

	assert scoring.location_score(user, same_spot, prefs) == 1.0
	assert scoring.location_score(user, at_limit, prefs) == pytest.approx(0.0, abs=1e-9)
	assert scoring.location_score(user, beyond, prefs) == 0.0


def test_location_score_treats_zero_coordinates_as_present():
	prefs = _prefs(max_distance=50)
	user = Profile(id="u", latitude=0.0, longitude=0.0)
	candidate = Profile(id="c", latitude=_north_of_origin(25), longitude=0.0)
	assert scoring.location_score(user, candidate, prefs) == pytest.approx(0.5)


def test_location_score_neutral_without_coordinates():
	prefs = _prefs()
	user = Profile(id="u", latitude=10.0, longitude=None)
	candidate = Profile(id="c", latitude=1.0, longitude=1.0)
	assert scoring.location_score(user, candidate, prefs) == 0.5


def test_haversine_matches_known_distance():
	# Paris -> London is roughly 344 km
	assert scoring.haversine_km(48.8566, 2.3522, 51.5074, -0.1278) == pytest.approx(343.5, abs=1.5)


def test_age_score_bounds_inside_and_outside_range():
	prefs = _prefs(age_range=AgeRange(min=18, max=25))
	assert scoring.age_score(Profile(id="a", date_of_birth=_dob(18)), prefs, TODAY) > 0
	assert scoring.age_score(Profile(id="b", date_of_birth=_dob(25)), prefs, TODAY) > 0
	assert scoring.age_score(Profile(id="c", date_of_birth=_dob(17)), prefs, TODAY) == 0
	assert scoring.age_score(Profile(id="d", date_of_birth=_dob(26)), prefs, TODAY) == 0


def test_age_score_peaks_at_midpoint():
	prefs = _prefs(age_range=AgeRange(min=20, max=30))
	mid = scoring.age_score(Profile(id="m", date_of_birth=_dob(25)), prefs, TODAY)
	edge = scoring.age_score(Profile(id="e", date_of_birth=_dob(20)), prefs, TODAY)
	assert mid == 1.0
	assert edge == pytest.approx(scoring.AGE_IN_RANGE_FLOOR)


def test_age_score_single_year_range():
	prefs = _prefs(age_range=AgeRange(min=21, max=21))
	assert scoring.age_score(Profile(id="x", date_of_birth=_dob(21)), prefs, TODAY) == 1.0
	assert scoring.age_score(Profile(id="y", date_of_birth=_dob(22)), prefs, TODAY) == 0.0


def test_age_score_neutral_without_birthdate():
	assert scoring.age_score(Profile(id="x"), _prefs(), TODAY) == 0.5


def test_age_respects_birthday_not_yet_reached():
	profile = Profile(id="x", date_of_birth=date(2000, 12, 31))
	assert profile.age_on(date(2026, 6, 15)) == 25
	assert profile.age_on(date(2026, 12, 31)) == 26


@pytest.mark.parametrize(
	("hours", "expected"),
	[(1, 1.0), (23.9, 1.0), (24, 0.7), (167, 0.7), (168, 0.4), (719, 0.4), (720, 0.1), (5000, 0.1)],
)
def test_activity_score_steps(hours, expected):
	candidate = Profile(id="c", last_seen=NOW - timedelta(hours=hours))
	assert scoring.activity_score(candidate, NOW) == expected


def test_activity_score_neutral_when_unknown():
	assert scoring.activity_score(Profile(id="c"), NOW) == 0.5


def test_combine_clamps_to_unit_interval():
	breakdown = ScoreBreakdown(interests=1, location=1, age=1, activity=1, collaborative=1, diversity=1)
	heavy = _prefs(activity_weight=1.0, diversity_weight=1.0, compatibility_weight=1.0)
	assert scoring.combine(breakdown, heavy, MatchingVariant.ADVANCED) == 1.0


def test_control_variant_ignores_behavioural_signals():
	prefs = _prefs()
	base = ScoreBreakdown(interests=0.9, location=0.3, age=0.6, activity=0.1, collaborative=0.3, diversity=0.0)
	other = ScoreBreakdown(interests=0.9, location=0.3, age=0.6, activity=1.0, collaborative=0.8, diversity=1.0)
	expected = (0.9 + 0.3 + 0.6) / 3
	assert scoring.combine(base, prefs, MatchingVariant.CONTROL) == pytest.approx(expected)
	assert scoring.combine(other, prefs, MatchingVariant.CONTROL) == pytest.approx(expected)


def test_ml_inspired_uses_fixed_weights():
	prefs = _prefs(activity_weight=0.0, diversity_weight=0.0, compatibility_weight=0.0)
	breakdown = ScoreBreakdown(interests=0.5, location=0.5, age=0.5, activity=0.5, collaborative=0.5, diversity=0.5)
	# weights sum to 1.2, so an all-0.5 breakdown lands at 0.6 regardless of preferences
	assert scoring.combine(breakdown, prefs, MatchingVariant.ML_INSPIRED) == pytest.approx(0.6)


def test_every_sub_score_and_variant_stays_in_unit_interval():
	ranker = CompatibilityRanker(now=lambda: NOW)
	user = Profile(id="u", date_of_birth=_dob(20), latitude=0.0, longitude=0.0, tags=("a", "b"))
	candidates = [
		Profile(id="1"),
		Profile(id="2", date_of_birth=_dob(90), latitude=80.0, longitude=120.0, tags=("z",)),
		Profile(id="3", date_of_birth=_dob(21), latitude=0.0, longitude=0.0, tags=("a", "b"), last_seen=NOW),
		Profile(id="4", date_of_birth=_dob(5), last_seen=NOW + timedelta(days=3), tags=("a",)),
	]
	weird_prefs = _prefs(max_distance=0, age_range=AgeRange(min=30, max=20), activity_weight=1.0, diversity_weight=1.0)
	for prefs in (_prefs(), weird_prefs):
		for candidate in candidates:
			for variant in MatchingVariant:
				result = ranker.score(user, candidate, prefs, variant)
				assert 0.0 <= result.score <= 1.0
				for value in result.breakdown.as_dict().values():
					assert 0.0 <= value <= 1.0


def test_end_to_end_advanced_score():
	ranker = CompatibilityRanker(now=lambda: NOW)
	user = Profile(id="user-1", date_of_birth=_dob(20), latitude=0.0, longitude=0.0, tags=("music", "coding"))
	candidate = Profile(
		id="cand-1",
		date_of_birth=_dob(22),
		latitude=_north_of_origin(10),
		longitude=0.0,
		tags=("coding", "sports"),
	)
	prefs = _prefs()

	result = ranker.score(user, candidate, prefs, MatchingVariant.ADVANCED)

	assert result.breakdown.interests == pytest.approx(1 / 3)
	assert result.breakdown.location == pytest.approx(0.8)
	expected_age = 0.1 + 0.9 * (1 - 0.5 / 3.5)
	assert result.breakdown.age == pytest.approx(expected_age)
	assert result.breakdown.activity == 0.5
	assert result.breakdown.collaborative == 0.5
	assert result.breakdown.diversity == 1.0
	expected = (1 / 3) * 0.5 + 0.8 * 0.3 + expected_age * 0.2 + 0.5 * 0.3 + 0.5 * 0.1 + 1.0 * 0.2
	assert result.score == pytest.approx(expected)
	assert result.score == pytest.approx(0.980952, abs=1e-6)
