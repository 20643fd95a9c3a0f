import pytest

from collegecrush.domain.matching.models import MatchingVariant
from collegecrush.domain.matching.variants import assign_variant, stable_hash


@pytest.mark.parametrize(
	("user_id", "expected"),
	[
		("ab", MatchingVariant.CONTROL),
		("A", MatchingVariant.ADVANCED),
		("a", MatchingVariant.ML_INSPIRED),
	],
)
def test_assignment_buckets(user_id, expected):
	assert assign_variant(user_id) == expected


def test_assignment_is_deterministic():
	user_ids = [f"user-{index}" for index in range(50)]
	first = [assign_variant(user_id) for user_id in user_ids]
	second = [assign_variant(user_id) for user_id in user_ids]
	assert first == second


def test_hash_wraps_to_32_bits_and_is_non_negative():
	long_id = "f47ac10b-58cc-4372-a567-0e02b2c3d479" * 4
	value = stable_hash(long_id)
	assert 0 <= value <= 2**31
	assert stable_hash("") == 0
	assert stable_hash("ab") == 97 * 31 + 98


def test_hash_counts_astral_characters_as_two_units():
	# U+1F600 is the surrogate pair D83D DE00
	assert stable_hash("\U0001F600") == 0xD83D * 31 + 0xDE00


def test_all_variants_are_reachable():
	seen = {assign_variant(f"student-{index}") for index in range(300)}
	assert seen == set(MatchingVariant)
