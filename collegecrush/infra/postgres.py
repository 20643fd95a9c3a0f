"""asyncpg pool construction for the direct Postgres message backend."""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from collegecrush.settings import settings

logger = logging.getLogger(__name__)


async def create_pool(dsn: Optional[str] = None, *, max_size: Optional[int] = None) -> asyncpg.Pool:
	"""Open a pool sized from settings; connections are made on first use."""
	size = int(max_size if max_size is not None else settings.postgres_max_pool_size)
	pool = await asyncpg.create_pool(dsn=dsn or settings.postgres_url, min_size=0, max_size=size)
	logger.info("postgres.pool_created", extra={"max_size": size})
	return pool


async def close_pool(pool: Optional[asyncpg.Pool]) -> None:
	if pool is None:
		return
	await pool.close()
	logger.info("postgres.pool_closed")


__all__ = ["close_pool", "create_pool"]
