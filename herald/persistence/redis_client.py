from __future__ import annotations

import asyncio
import logging
import weakref

from redis.asyncio import Redis
from redis.exceptions import RedisError

from herald.core.config import get_settings


logger = logging.getLogger(__name__)

# redis.asyncio connections are bound to the loop that opened them; closed loops drop out on their own.
_clients: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Redis]" = weakref.WeakKeyDictionary()


async def _connect(redis_url: str) -> Redis | None:
    # from_url connects lazily, so ping before handing the client out.
    client = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("queue_redis_unavailable url_configured=%s", bool(redis_url), exc_info=exc)
        await client.aclose()
        return None
    return client


async def get_redis() -> Redis | None:
    # Shared client for the queue lock and the redis queue store, one per running loop.
    loop = asyncio.get_running_loop()
    client = _clients.get(loop)
    if client is None:
        client = await _connect(get_settings().redis_url)
        if client is not None:
            _clients[loop] = client
    return client
