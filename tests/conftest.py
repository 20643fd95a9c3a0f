import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure the package is importable when tests run from the repo root without an install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
	sys.path.insert(0, str(PROJECT_ROOT))

from collegecrush.settings import settings


FIXED_NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from collegecrush.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	original_env = settings.environment
	original_sampling = settings.obs_log_sampling_rate_info
	settings.environment = "dev"
	settings.obs_log_sampling_rate_info = 1.0
	try:
		yield
	finally:
		settings.environment = original_env
		settings.obs_log_sampling_rate_info = original_sampling


@pytest.fixture
def fixed_now():
	return lambda: FIXED_NOW
