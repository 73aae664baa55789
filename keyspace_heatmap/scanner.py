"""
Bounded SCAN drivers.

Standalone and sentinel shards (DB indexes) are walked one after another;
cluster shards (masters) are walked concurrently, one cursor loop per node.
A failing shard is recorded on its ``ShardScan`` and the others carry on.
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence

from redis.exceptions import RedisClusterException, RedisError

from keyspace_heatmap.aggregate import AggregationResult, aggregate_keys, merge_results
from keyspace_heatmap.errors import ConfigurationError
from keyspace_heatmap.metadata import MetadataCollector
from keyspace_heatmap.models import SampleStats, ScanConfig, ScanResult, ShardScan
from keyspace_heatmap.topology import CLUSTER, Shard, ShardSessions, Topology

logger = logging.getLogger(__name__)

SHARD_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
# RedisClusterException does not derive from RedisError
OPEN_ERRORS = SHARD_ERRORS + (RedisClusterException,)


async def keyspace_count(client, db: int) -> int:
    info = await client.info("keyspace")
    entry = info.get("db%d" % db)
    if isinstance(entry, dict):
        return int(entry.get("keys", 0))
    return 0


async def walk_shard(shard: Shard, config: ScanConfig, scan: ShardScan, limit: int):
    client = shard.client
    collector = MetadataCollector(client, db=shard.db, size_stride=config.size_stride)
    try:
        scan.approx_keys = await keyspace_count(client, shard.db)
    except SHARD_ERRORS as e:
        logger.warning("INFO keyspace failed on %s, key total unknown: %s", shard.name, e)

    cursor = 0
    while True:
        cursor, batch = await client.scan(cursor=cursor, match=config.match, count=config.scan_count)
        if batch:
            meta = await collector.collect(batch)
            scan.keys.extend(meta.keys)
            scan.size_calls += meta.size_calls
        if len(scan.keys) >= limit or int(cursor) == 0:
            break
    scan.complete = True


async def run_shard(shard: Shard, config: ScanConfig, scan: ShardScan, limit: int):
    try:
        await walk_shard(shard, config, scan, limit)
    except SHARD_ERRORS as e:
        scan.error = "%s: %s" % (shard.name, str(e) or type(e).__name__)
        logger.warning("scan of %s failed: %s", shard.name, e)
    return scan


def _scans_for(shards, scans):
    if scans is None:
        scans = [ShardScan(s.name, s.db) for s in shards]
    return scans


async def scan_standalone(shards: Sequence[Shard], config: ScanConfig, scans=None) -> List[ShardScan]:
    scans = _scans_for(shards, scans)
    total = 0
    for shard, scan in zip(shards, scans):
        if total >= config.sample_limit:
            break
        await run_shard(shard, config, scan, config.sample_limit - total)
        total += len(scan.keys)
    return scans


async def scan_cluster(shards: Sequence[Shard], config: ScanConfig, scans=None) -> List[ShardScan]:
    scans = _scans_for(shards, scans)
    await asyncio.gather(*(
        run_shard(shard, config, scan, config.sample_limit)
        for shard, scan in zip(shards, scans)
    ))
    return scans


async def _drive(topology: Topology, shards, config, scans, timeout) -> Optional[str]:
    driver = scan_cluster if topology.concurrent else scan_standalone
    task = asyncio.ensure_future(driver(shards, config, scans))
    try:
        done, _ = await asyncio.wait([task], timeout=timeout)
    finally:
        if not task.done():
            task.cancel()
            await asyncio.wait([task])
    if task in done:
        task.result()
        return None
    logger.warning("scan deadline of %.1fs expired, returning partial results", timeout)
    return "timeout: scan deadline of %.1fs expired, results are partial" % timeout


async def sample_keyspace(sessions: ShardSessions, config: ScanConfig, timeout: Optional[float] = None) -> ScanResult:
    sessions.topology.validate()
    config.validate()
    if timeout is not None and timeout <= 0:
        raise ConfigurationError("timeout must be positive")
    shards = sessions.shards
    if not shards:
        raise ConfigurationError("no shards to scan, open the sessions first")

    started = time.monotonic()
    scans = [ShardScan(s.name, s.db) for s in shards]
    timed_out = await _drive(sessions.topology, shards, config, scans, timeout)

    stats = SampleStats()
    partials = []
    remaining = config.sample_limit
    for scan in scans:
        if scan.error:
            stats.errors.append(scan.error)
        kept = scan.keys[:remaining]
        remaining -= len(kept)
        stats.sampled += len(kept)
        stats.memory_usage_calls += scan.size_calls
        stats.approx_total_keys += scan.approx_keys
        partials.append(aggregate_keys(kept, config))
    if timed_out:
        stats.errors.append(timed_out)

    merged = merge_results(partials) if partials else AggregationResult(config.size_top_n)
    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "sampled %d key(s) from %d shard(s) in %dms, %d error(s)",
        stats.sampled, len(shards), stats.duration_ms, len(stats.errors),
    )
    return ScanResult(stats, merged.sorted_prefixes(), merged.top_keys())


def _failed_result(config: ScanConfig, started: float, error: str) -> ScanResult:
    stats = SampleStats(errors=[error])
    stats.duration_ms = int((time.monotonic() - started) * 1000)
    empty = AggregationResult(config.size_top_n)
    return ScanResult(stats, empty.sorted_prefixes(), empty.top_keys())


async def scan_topology(topology: Topology, config: ScanConfig, timeout: Optional[float] = None) -> ScanResult:
    topology.validate()
    config.validate()
    if timeout is not None and timeout <= 0:
        raise ConfigurationError("timeout must be positive")

    started = time.monotonic()
    stage = "Cluster discovery" if topology.kind == CLUSTER else "Connect"
    sessions = ShardSessions(topology, config.dbs)
    try:
        try:
            await asyncio.wait_for(sessions.open(), timeout)
        except asyncio.TimeoutError as e:
            if timeout is None:
                logger.warning("%s failed: %s", stage, e)
                return _failed_result(config, started, "%s: %s" % (stage, str(e) or type(e).__name__))
            logger.warning("%s did not finish within the %.1fs deadline", stage, timeout)
            return _failed_result(config, started, "timeout: %s exceeded the %.1fs deadline" % (stage.lower(), timeout))
        except OPEN_ERRORS as e:
            logger.warning("%s failed: %s", stage, e)
            return _failed_result(config, started, "%s: %s" % (stage, str(e) or type(e).__name__))

        remaining = None
        if timeout is not None:
            remaining = max(timeout - (time.monotonic() - started), 0.001)
        return await sample_keyspace(sessions, config, timeout=remaining)
    finally:
        await sessions.close()
