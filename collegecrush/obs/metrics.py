"""Central registry for Prometheus metrics used across the core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


MATCH_RANK_TOTAL = Counter(
	"crush_match_rank_total",
	"Candidate rankings served",
	["variant", "cache"],
)

MATCH_RANK_CANDIDATES = Counter(
	"crush_match_rank_candidates_total",
	"Candidates scored by the ranker",
)

MATCH_RANK_DURATION = Histogram(
	"crush_match_rank_duration_ms",
	"Time spent scoring and sorting a candidate pool (ms)",
	buckets=(0.5, 1, 2, 5, 10, 25, 50, 100, 250),
)

MATCH_CACHE_EVICTIONS = Counter(
	"crush_match_cache_evictions_total",
	"Ranking cache entries evicted",
	["reason"],
)

CHAT_SEND = Counter(
	"crush_chat_send_total",
	"Outbound chat messages by outcome",
	["outcome"],
)

CHAT_RETRY_QUEUE_DEPTH = Gauge(
	"crush_chat_retry_queue_depth",
	"Messages waiting in the retry queue",
)

CHAT_RETRY_TICKS = Counter(
	"crush_chat_retry_ticks_total",
	"Retry worker ticks by result",
	["result"],
)

REALTIME_RECONNECTS = Counter(
	"crush_realtime_reconnects_total",
	"Realtime reconnect decisions",
	["outcome"],
)

REALTIME_SUBSCRIPTIONS = Gauge(
	"crush_realtime_subscriptions_active",
	"Live realtime conversation subscriptions",
)

REALTIME_EVENTS = Counter(
	"crush_realtime_events_total",
	"Realtime events delivered to callbacks",
	["event"],
)


def observe_rank(variant: str, *, cached: bool, candidates: int = 0, elapsed_ms: float | None = None) -> None:
	MATCH_RANK_TOTAL.labels(variant=variant, cache="hit" if cached else "miss").inc()
	if candidates:
		MATCH_RANK_CANDIDATES.inc(candidates)
	if elapsed_ms is not None:
		MATCH_RANK_DURATION.observe(elapsed_ms)


def inc_cache_eviction(reason: str, count: int = 1) -> None:
	if count > 0:
		MATCH_CACHE_EVICTIONS.labels(reason=reason).inc(count)


def inc_chat_send(outcome: str) -> None:
	CHAT_SEND.labels(outcome=outcome).inc()


def set_retry_queue_depth(depth: int) -> None:
	CHAT_RETRY_QUEUE_DEPTH.set(depth)


def inc_retry_tick(result: str) -> None:
	CHAT_RETRY_TICKS.labels(result=result).inc()


def inc_realtime_reconnect(outcome: str) -> None:
	REALTIME_RECONNECTS.labels(outcome=outcome).inc()


def realtime_subscribed() -> None:
	REALTIME_SUBSCRIPTIONS.inc()


def realtime_unsubscribed() -> None:
	REALTIME_SUBSCRIPTIONS.dec()


def inc_realtime_event(event: str) -> None:
	REALTIME_EVENTS.labels(event=event).inc()


__all__ = [
	"inc_cache_eviction",
	"inc_chat_send",
	"inc_realtime_event",
	"inc_realtime_reconnect",
	"inc_retry_tick",
	"observe_rank",
	"realtime_subscribed",
	"realtime_unsubscribed",
	"set_retry_queue_depth",
]
