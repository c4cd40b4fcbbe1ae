"""Container health check for the catalog sync worker.

Redis and PostgreSQL are required: either being unreachable fails the
check. The supplier channels are only reported, since the orchestrator
can fall back from one channel to the other.

Usage: python -m catalog_sync.health_check
"""
import asyncio
import sys
from typing import Awaitable, Callable, Dict, List, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.clients import BulkFeedClient, SupplierApiClient
from catalog_sync.config import settings
from catalog_sync.db.base import engine
from catalog_sync.services.rate_limit import RateLimitGate


async def check_redis_connection() -> bool:
    """PING the worker's Redis instance."""
    redis = Redis.from_url(settings.redis_url, socket_connect_timeout=5)
    try:
        return bool(await redis.ping())
    except (RedisError, OSError) as e:
        print(f"Redis health check failed: {e}", file=sys.stderr)
        return False
    finally:
        await redis.aclose()


async def check_database_connection() -> bool:
    """Run ``SELECT 1`` and confirm the catalog table exists."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            found = await conn.scalar(text("SELECT to_regclass('public.catalog_items') IS NOT NULL"))
    except (SQLAlchemyError, OSError) as e:
        print(f"Database health check failed: {e}", file=sys.stderr)
        return False
    finally:
        await engine.dispose()

    if not found:
        print("Database health check failed: catalog_items table missing (run migrations)", file=sys.stderr)
        return False
    return True


async def check_supplier_channels() -> Dict[str, bool]:
    """Check the supplier API and the bulk feed service."""
    async with SupplierApiClient(RateLimitGate()) as api_client:
        api_ok = await api_client.test_connection()
    async with BulkFeedClient() as bulk_client:
        bulk_ok = await bulk_client.test_connection()

    return {"api": api_ok, "bulk": bulk_ok}


REQUIRED_CHECKS: List[Tuple[str, Callable[[], Awaitable[bool]]]] = [
    ("Redis", check_redis_connection),
    ("Database", check_database_connection),
]


async def main() -> int:
    """Run the checks; return the process exit code."""
    for name, check in REQUIRED_CHECKS:
        if not await check():
            print(f"Health check failed: {name} unavailable", file=sys.stderr)
            return 1

    channels = await check_supplier_channels()
    degraded = [channel for channel, ok in channels.items() if not ok]
    if degraded:
        print(f"Warning: supplier channel(s) unavailable: {', '.join(degraded)}", file=sys.stderr)

    print("Health check passed")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
