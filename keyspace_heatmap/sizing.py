"""
Best-effort byte size of a key.

MEMORY USAGE is tried first; when the server refuses it the estimator falls
back to sampling a handful of elements and extrapolating by cardinality.
A failure anywhere yields ``None`` (no estimate), never 0.
"""
import logging
from typing import Optional

from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)

KEY_OVERHEAD_BYTES = 50
STREAM_ENTRY_BYTES = 100
MEMORY_USAGE_SAMPLES = 5
COLLECTION_SAMPLE = 10
SET_SAMPLE = 20


def encoded_len(value) -> int:
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    return len(str(value).encode("utf-8"))


def _extrapolate(sizes, cardinality) -> Optional[int]:
    # an empty sample of a non-empty collection says nothing about its size
    if not sizes:
        return None
    return int(sum(sizes) / len(sizes) * cardinality)


class SizeEstimator:
    def __init__(self, client):
        self.client = client
        self.native_available = True

    async def estimate(self, key: bytes, key_type: str) -> Optional[int]:
        if self.native_available:
            try:
                usage = await self.client.memory_usage(key, samples=MEMORY_USAGE_SAMPLES)
            except ResponseError as e:
                logger.debug("MEMORY USAGE unavailable, using heuristics: %s", e)
                self.native_available = False
            except RedisError as e:
                logger.debug("MEMORY USAGE failed for %r: %s", key, e)
            else:
                if usage is None:
                    return None
                if usage > 0:
                    return int(usage)

        try:
            payload = await self.heuristic(key, key_type)
        except (RedisError, ValueError, TypeError) as e:
            logger.debug("size heuristic failed for %r (%s): %s", key, key_type, e)
            return None
        if payload is None:
            return None
        return payload + KEY_OVERHEAD_BYTES

    async def heuristic(self, key: bytes, key_type: str) -> Optional[int]:
        c = self.client
        if key_type == "string":
            return int(await c.strlen(key))

        if key_type == "hash":
            hlen = int(await c.hlen(key))
            if hlen == 0:
                return 0
            _, fields = await c.hscan(key, 0, count=COLLECTION_SAMPLE)
            pairs = list(fields.items())[:COLLECTION_SAMPLE]
            return _extrapolate([encoded_len(f) + encoded_len(v) for f, v in pairs], hlen)

        if key_type == "list":
            llen = int(await c.llen(key))
            if llen == 0:
                return 0
            items = await c.lrange(key, 0, COLLECTION_SAMPLE - 1)
            return _extrapolate([encoded_len(v) for v in items], llen)

        if key_type == "zset":
            zcard = int(await c.zcard(key))
            if zcard == 0:
                return 0
            items = await c.zrange(key, 0, COLLECTION_SAMPLE - 1, withscores=True)
            return _extrapolate([encoded_len(m) + encoded_len(repr(s)) for m, s in items], zcard)

        if key_type == "set":
            scard = int(await c.scard(key))
            if scard == 0:
                return 0
            _, members = await c.sscan(key, 0, count=SET_SAMPLE)
            return _extrapolate([encoded_len(m) for m in list(members)[:SET_SAMPLE]], scard)

        if key_type == "stream":
            return int(await c.xlen(key)) * STREAM_ENTRY_BYTES

        return 0
