"""Redis connection pool and single-run claims."""

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 10) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis | None:
    """The pool, or None before init_redis(). Callers treat Redis as optional."""
    return _pool


async def claim_once(client: redis.Redis, key: str, ttl: int) -> bool:
    """SET NX EX. True for the first claimant until the key expires."""
    return bool(await client.set(key, "1", nx=True, ex=ttl))
