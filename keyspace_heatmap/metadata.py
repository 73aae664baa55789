import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from keyspace_heatmap import replies
from keyspace_heatmap.models import KeyMeta, normalize_type
from keyspace_heatmap.sizing import SizeEstimator

logger = logging.getLogger(__name__)

DEFAULT_SIZE_STRIDE = 10

# PTTL sentinels
PTTL_NO_EXPIRY = -1
PTTL_MISSING = -2


@dataclass
class BatchMetadata:
    keys: List[KeyMeta] = field(default_factory=list)
    size_calls: int = 0


class MetadataCollector:
    """
    Turns one SCAN batch into KeyMeta records.

    TYPE, PTTL and OBJECT IDLETIME for the whole batch go out in a single
    pipeline. Only every ``size_stride``-th key of the batch is sized; the
    choice follows batch position, so once a scan is cut at the sample limit
    the sized keys are not a uniform random sample of a prefix.
    """

    def __init__(self, client, db=0, size_stride=DEFAULT_SIZE_STRIDE, estimator=None):
        self.client = client
        self.db = db
        self.size_stride = size_stride
        self.estimator = estimator if estimator is not None else SizeEstimator(client)

    async def collect(self, raw_keys: Sequence[bytes]) -> BatchMetadata:
        out = BatchMetadata()
        if not raw_keys:
            return out

        pipe = self.client.pipeline(transaction=False)
        for key in raw_keys:
            pipe.type(key)
            pipe.pttl(key)
            pipe.object("idletime", key)
        raw = await pipe.execute(raise_on_error=False)

        for i, (key, (type_raw, ttl_raw, idle_raw)) in enumerate(zip(raw_keys, replies.chunk(raw, 3))):
            name = replies.as_text(key)
            type_reply = replies.decode(type_raw, replies.as_text)
            ttl_reply = replies.decode(ttl_raw, replies.as_int)
            idle_reply = replies.decode(idle_raw, replies.as_int)

            if not type_reply.ok:
                logger.debug("dropping %s: TYPE failed (%s)", name, type_reply.message)
                continue
            if type_reply.value == "none":
                logger.debug("dropping %s: key vanished", name)
                continue
            if not ttl_reply.ok:
                logger.debug("dropping %s: PTTL failed (%s)", name, ttl_reply.message)
                continue
            if ttl_reply.value == PTTL_MISSING:
                logger.debug("dropping %s: key expired during scan", name)
                continue

            meta = KeyMeta(
                key=name,
                type=normalize_type(type_reply.value),
                ttl_ms=None if ttl_reply.value == PTTL_NO_EXPIRY else ttl_reply.value,
                idle_sec=idle_reply.value if idle_reply.ok else None,
                db=self.db,
            )
            if i % self.size_stride == 0:
                out.size_calls += 1
                meta.est_bytes = await self.estimator.estimate(key, meta.type)
            out.keys.append(meta)

        return out
