"""Message persistence backends.

The messenger only needs two calls: insert a message and probe connectivity.
``RestMessageBackend`` talks to a PostgREST-compatible API (Supabase REST);
``PostgresMessageBackend`` writes to the ``messages`` table directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import asyncpg
import httpx

from collegecrush.infra.postgres import close_pool, create_pool
from collegecrush.settings import settings

from .exceptions import BackendError, BackendUnavailable
from .models import Message
from .schemas import normalize_message

logger = logging.getLogger(__name__)


class MessageBackend(Protocol):
	async def insert_message(self, conversation_id: str, text: str, sender_id: str) -> Message:
		...

	async def probe(self) -> bool:
		...


class RestMessageBackend:
	"""PostgREST client for the ``messages`` table."""

	def __init__(
		self,
		*,
		base_url: Optional[str] = None,
		api_key: Optional[str] = None,
		client: Optional[httpx.AsyncClient] = None,
		timeout: Optional[float] = None,
	) -> None:
		self.base_url = (base_url or settings.backend_rest_url).rstrip("/")
		self.api_key = api_key if api_key is not None else settings.backend_api_key
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(
			base_url=self.base_url,
			timeout=timeout if timeout is not None else settings.backend_timeout_seconds,
		)

	def _headers(self, *, prefer: Optional[str] = None) -> dict[str, str]:
		headers = {"Accept": "application/json"}
		if self.api_key:
			headers["apikey"] = self.api_key
			headers["Authorization"] = f"Bearer {self.api_key}"
		if prefer:
			headers["Prefer"] = prefer
		return headers

	def _url(self, path: str) -> str:
		return f"{self.base_url}/rest/v1/{path.lstrip('/')}"

	async def insert_message(self, conversation_id: str, text: str, sender_id: str) -> Message:
		body = {"conversation_id": conversation_id, "text": text, "sender_id": sender_id}
		try:
			response = await self._client.post(
				self._url("messages"),
				json=body,
				headers=self._headers(prefer="return=representation"),
			)
		except httpx.HTTPError as exc:
			raise BackendUnavailable(str(exc) or exc.__class__.__name__) from exc
		if response.status_code >= 400:
			raise BackendError(_error_detail(response), status=response.status_code)
		payload = response.json()
		row = payload[0] if isinstance(payload, list) and payload else payload
		if not row or not isinstance(row, dict):
			raise BackendError("empty_response", status=response.status_code)
		return normalize_message(row)

	async def probe(self) -> bool:
		try:
			response = await self._client.get(
				self._url("profiles"),
				params={"select": "id", "limit": "1"},
				headers=self._headers(),
			)
		except httpx.HTTPError:
			return False
		return response.status_code < 400

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
	try:
		data: Any = response.json()
	except ValueError:
		return response.text or f"http_{response.status_code}"
	if isinstance(data, dict):
		return str(data.get("message") or data.get("error") or data)
	return str(data)


class PostgresMessageBackend:
	"""Writes messages straight into Postgres.

	Without an injected pool the backend opens its own on first use and
	closes it in :meth:`aclose`; an injected pool is left to its owner.
	"""

	def __init__(self, pool: Optional[asyncpg.Pool] = None, *, dsn: Optional[str] = None) -> None:
		self._pool = pool
		self._dsn = dsn
		self._owns_pool = pool is None
		self._pool_lock = asyncio.Lock()

	async def _get_pool(self) -> asyncpg.Pool:
		if self._pool is None:
			async with self._pool_lock:
				if self._pool is None:
					self._pool = await create_pool(self._dsn)
		return self._pool

	async def aclose(self) -> None:
		if not self._owns_pool:
			return
		pool, self._pool = self._pool, None
		await close_pool(pool)

	async def insert_message(self, conversation_id: str, text: str, sender_id: str) -> Message:
		try:
			pool = await self._get_pool()
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					INSERT INTO messages (conversation_id, text, sender_id)
					VALUES ($1, $2, $3)
					RETURNING id, conversation_id, text, sender_id, created_at, is_read
					""",
					conversation_id,
					text,
					sender_id,
				)
		except (OSError, asyncpg.PostgresError) as exc:
			raise BackendError(str(exc) or exc.__class__.__name__) from exc
		if row is None:
			raise BackendError("empty_response")
		return normalize_message(dict(row))

	async def probe(self) -> bool:
		try:
			pool = await self._get_pool()
			async with pool.acquire() as conn:
				await conn.fetchval("SELECT id FROM profiles LIMIT 1")
		except (OSError, asyncpg.PostgresError):
			logger.debug("messaging.probe_failed", exc_info=True)
			return False
		return True


__all__ = ["MessageBackend", "PostgresMessageBackend", "RestMessageBackend"]
