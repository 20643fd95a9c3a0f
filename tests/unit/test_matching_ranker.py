import random
from datetime import date, datetime, timezone

import pytest

from collegecrush.domain.matching.cache import RankingCache
from collegecrush.domain.matching.models import MatchingVariant, Profile
from collegecrush.domain.matching.schemas import AgeRange, MatchingPreferences
from collegecrush.domain.matching.service import CompatibilityRanker
from collegecrush.domain.matching.signals import CollaborativeSignals, DiversityTracker

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
	def __init__(self, start: float = 1000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


def _ranker(clock: FakeClock | None = None, **kwargs) -> CompatibilityRanker:
	cache = RankingCache(ttl_seconds=300, soft_limit=50, clock=clock or FakeClock())
	return CompatibilityRanker(cache=cache, now=lambda: NOW, rng=random.Random(7), **kwargs)


def _user() -> Profile:
	return Profile(id="me", date_of_birth=date(2006, 1, 1), latitude=0.0, longitude=0.0, tags=("music", "coding"))


def _pool() -> list[Profile]:
	return [
		Profile(id="far", date_of_birth=date(2004, 1, 1), latitude=1.0, longitude=1.0, tags=("golf",)),
		Profile(id="twin", date_of_birth=date(2004, 6, 1), latitude=0.0, longitude=0.0, tags=("music", "coding")),
		Profile(id="half", date_of_birth=date(2003, 1, 1), latitude=0.05, longitude=0.0, tags=("coding", "sports")),
		Profile(id="old", date_of_birth=date(1980, 1, 1), latitude=0.0, longitude=0.0, tags=("music",)),
	]


def test_rank_orders_by_descending_score():
	ranker = _ranker()
	prefs = MatchingPreferences()
	ranked = ranker.rank_candidates(_user(), _pool(), prefs, MatchingVariant.CONTROL)
	scores = [ranker.score(_user(), profile, prefs, MatchingVariant.CONTROL).score for profile in ranked]
	assert ranked[0].id == "twin"
	assert scores == sorted(scores, reverse=True)


def test_rank_is_repeatable_within_ttl():
	clock = FakeClock()
	ranker = _ranker(clock)
	prefs = MatchingPreferences()
	equal_pool = [Profile(id=f"p{i}") for i in range(30)]

	first = [p.id for p in ranker.rank_candidates(_user(), equal_pool, prefs)]
	clock.advance(299)
	second = [p.id for p in ranker.rank_candidates(_user(), equal_pool, prefs)]

	assert first == second
	assert len(ranker.cache) == 1


def test_cached_order_skips_rescoring(monkeypatch):
	ranker = _ranker()
	prefs = MatchingPreferences()
	ranker.rank_candidates(_user(), _pool(), prefs)

	def _boom(*args, **kwargs):
		raise AssertionError("should not rescore")

	monkeypatch.setattr(ranker, "score", _boom)
	ranked = ranker.rank_candidates(_user(), _pool(), prefs)
	assert {p.id for p in ranked} == {"far", "twin", "half", "old"}


def test_cache_expires_after_ttl():
	clock = FakeClock()
	ranker = _ranker(clock)
	prefs = MatchingPreferences()
	calls = []
	original = ranker.score

	def _counting(*args, **kwargs):
		calls.append(1)
		return original(*args, **kwargs)

	ranker.score = _counting  # type: ignore[method-assign]
	ranker.rank_candidates(_user(), _pool(), prefs)
	clock.advance(301)
	ranker.rank_candidates(_user(), _pool(), prefs)
	assert len(calls) == 8


def test_invalidate_cache_forces_rescoring():
	ranker = _ranker()
	prefs = MatchingPreferences()
	ranker.rank_candidates(_user(), _pool(), prefs, MatchingVariant.CONTROL)
	ranker.rank_candidates(_user(), _pool(), prefs, MatchingVariant.ADVANCED)
	other = Profile(id="someone-else")
	ranker.rank_candidates(other, _pool(), prefs)

	assert ranker.invalidate_cache("me") == 2
	assert len(ranker.cache) == 1


def test_different_preferences_use_different_cache_entries():
	ranker = _ranker()
	ranker.rank_candidates(_user(), _pool(), MatchingPreferences())
	ranker.rank_candidates(_user(), _pool(), MatchingPreferences(max_distance=5))
	assert len(ranker.cache) == 2


def test_working_set_is_capped():
	ranker = _ranker(max_candidates=3)
	pool = [Profile(id=f"p{i}") for i in range(10)]
	ranked = ranker.rank_candidates(_user(), pool, MatchingPreferences())
	assert {p.id for p in ranked} == {"p0", "p1", "p2"}


def test_near_ties_are_shuffled_but_separated_from_clear_winners():
	pool = [Profile(id=f"p{i}") for i in range(12)]
	pool.append(_pool()[1])
	orders = set()
	for seed in range(8):
		ranker = CompatibilityRanker(
			cache=RankingCache(clock=FakeClock()),
			now=lambda: NOW,
			rng=random.Random(seed),
		)
		ranked = ranker.rank_candidates(_user(), pool, MatchingPreferences(), MatchingVariant.CONTROL)
		assert ranked[0].id == "twin"
		orders.add(tuple(p.id for p in ranked[1:]))
	assert len(orders) > 1


def test_unknown_variant_falls_back_to_advanced():
	ranker = _ranker()
	result = ranker.score(_user(), _pool()[1], MatchingPreferences(), "mystery")
	assert result.variant == MatchingVariant.ADVANCED


def test_record_outcome_builds_similar_users_and_collaborative_signal():
	ranker = _ranker()
	shared = ["a", "b", "c"]
	for candidate_id in shared + ["target"]:
		ranker.record_outcome("peer", candidate_id, liked=True)
	for candidate_id in shared:
		ranker.record_outcome("me", candidate_id, liked=True)

	assert ranker.collaborative.similar_users("me") == ["peer"]
	prefs = MatchingPreferences()
	liked_by_peer = ranker.score(_user(), Profile(id="target"), prefs)
	not_liked = ranker.score(_user(), Profile(id="unseen"), prefs)
	assert liked_by_peer.breakdown.collaborative == 0.8
	assert not_liked.breakdown.collaborative == 0.3


def test_collaborative_signal_neutral_without_history():
	ranker = _ranker()
	ranker.record_outcome("me", "a", liked=False)
	result = ranker.score(_user(), Profile(id="x"), MatchingPreferences())
	assert result.breakdown.collaborative == 0.5


def test_swipe_history_is_bounded():
	ranker = _ranker()
	for index in range(150):
		ranker.record_outcome("me", f"c{index}", liked=index % 2 == 0)
	swiped = ranker.collaborative.swiped("me")
	liked = ranker.collaborative.liked("me")
	assert len(swiped) == 100
	assert swiped[0] == "c50"
	assert len(liked) == 75


def test_similar_users_capped_at_ten_with_strongest_overlap_first():
	ranker = _ranker()
	mine = [f"x{i}" for i in range(5)]
	for peer in range(12):
		overlap = 3 if peer < 11 else 5
		for candidate_id in mine[:overlap]:
			ranker.record_outcome(f"peer{peer:02d}", candidate_id, liked=True)
	for candidate_id in mine:
		ranker.record_outcome("me", candidate_id, liked=True)

	similar = ranker.collaborative.similar_users("me")
	assert len(similar) == 10
	assert similar[0] == "peer11"


def test_record_diversity_penalises_repeats():
	ranker = _ranker()
	shown = Profile(id="s", college="MIT", course="CS", tags=("music", "coding"))
	ranker.record_diversity("me", shown)

	repeat = Profile(id="r", college="MIT", course="CS", tags=("music", "coding"))
	partial = Profile(id="p", college="MIT", course="Art", tags=("music", "golf"))
	fresh = Profile(id="f", college="Yale", course="Law", tags=("golf",))
	prefs = MatchingPreferences()

	assert ranker.score(_user(), repeat, prefs).breakdown.diversity == pytest.approx(0.3)
	assert ranker.score(_user(), partial, prefs).breakdown.diversity == pytest.approx(0.65)
	assert ranker.score(_user(), fresh, prefs).breakdown.diversity == 1.0


def test_diversity_window_keeps_last_ten():
	ranker = _ranker()
	for index in range(12):
		ranker.record_diversity("me", Profile(id=f"s{index}", college=f"college-{index}", tags=(f"t{index}",)))
	colleges = ranker.diversity.recent_colleges("me")
	assert len(colleges) == 10
	assert colleges[0] == "college-2"
	assert ranker.diversity.recent_tags("me")[0] == "t2"


def test_default_preferences():
	prefs = CompatibilityRanker.default_preferences()
	assert prefs.age_range == AgeRange(min=18, max=25)
	assert prefs.max_distance == 50
	assert prefs.preferred_genders == ["Male", "Female", "Other"]
	assert (prefs.activity_weight, prefs.diversity_weight, prefs.compatibility_weight) == (0.3, 0.2, 0.5)


def test_injected_empty_components_are_kept():
	clock = FakeClock()
	cache = RankingCache(ttl_seconds=5, soft_limit=3, clock=clock)
	collaborative = CollaborativeSignals(history_limit=4)
	diversity = DiversityTracker(window=2)
	assert len(cache) == 0

	ranker = CompatibilityRanker(cache=cache, collaborative=collaborative, diversity=diversity, now=lambda: NOW)
	assert ranker.cache is cache
	assert ranker.collaborative is collaborative
	assert ranker.diversity is diversity

	ranker.rank_candidates(_user(), _pool(), MatchingPreferences())
	assert len(cache) == 1
	clock.advance(6)
	cache.prune()
	assert len(cache) == 0
