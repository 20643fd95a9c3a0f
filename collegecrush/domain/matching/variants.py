"""Deterministic A/B variant assignment."""

from __future__ import annotations

from collegecrush.domain.matching.models import MatchingVariant

_BUCKETS = 100
_CONTROL_UPPER = 33
_ADVANCED_UPPER = 66


def stable_hash(value: str) -> int:
	"""32-bit ``h * 31 + c`` string hash, returned as a non-negative int.

	Matches the hash the web client uses, so a user lands in the same bucket
	on every surface.
	"""
	h = 0
	for char in value:
		for unit in _utf16_units(char):
			h = ((h << 5) - h + unit) & 0xFFFFFFFF
	if h & 0x80000000:
		h -= 1 << 32
	return abs(h)


def _utf16_units(char: str) -> tuple[int, ...]:
	code = ord(char)
	if code <= 0xFFFF:
		return (code,)
	code -= 0x10000
	return (0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF))


def assign_variant(user_id: str) -> MatchingVariant:
	bucket = stable_hash(user_id) % _BUCKETS
	if bucket < _CONTROL_UPPER:
		return MatchingVariant.CONTROL
	if bucket < _ADVANCED_UPPER:
		return MatchingVariant.ADVANCED
	return MatchingVariant.ML_INSPIRED


__all__ = ["assign_variant", "stable_hash"]
