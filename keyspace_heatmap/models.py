from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from keyspace_heatmap.errors import ConfigurationError

# TYPE reports bitmaps as "string"; "bitmap" is only part of the closed output set
KEY_TYPES = ("string", "hash", "list", "set", "zset", "stream", "bitmap", "other")

DEFAULT_TTL_BUCKETS = [0, 60, 300, 1800, 3600, 21600, 86400]
DEFAULT_IDLE_BUCKETS = [0, 60, 300, 3600, 21600, 86400]


def normalize_type(name: str) -> str:
    return name if name in KEY_TYPES else "other"


@dataclass
class KeyMeta:
    key: str
    type: str
    ttl_ms: Optional[int] = None
    idle_sec: Optional[int] = None
    est_bytes: Optional[int] = None
    db: int = 0

    def to_dict(self) -> dict:
        out = {"key": self.key, "type": self.type, "ttlMs": self.ttl_ms, "db": self.db}
        if self.idle_sec is not None:
            out["idleSec"] = self.idle_sec
        if self.est_bytes is not None:
            out["estBytes"] = self.est_bytes
        return out


@dataclass
class TypeStats:
    count: int = 0
    est_bytes: int = 0


@dataclass
class PrefixAgg:
    prefix: str
    count: int = 0
    est_bytes: int = 0
    ttl_hist: Dict[str, int] = field(default_factory=dict)
    idle_hist: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, TypeStats] = field(default_factory=dict)

    def copy(self) -> PrefixAgg:
        return PrefixAgg(
            prefix=self.prefix,
            count=self.count,
            est_bytes=self.est_bytes,
            ttl_hist=dict(self.ttl_hist),
            idle_hist=dict(self.idle_hist),
            by_type={t: TypeStats(s.count, s.est_bytes) for t, s in self.by_type.items()},
        )

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "count": self.count,
            "estBytes": self.est_bytes,
            "ttlHist": dict(self.ttl_hist),
            "idleHist": dict(self.idle_hist),
            "byType": {
                t: {"count": s.count, "estBytes": s.est_bytes}
                for t, s in self.by_type.items()
            },
        }


@dataclass
class SampleStats:
    duration_ms: int = 0
    sampled: int = 0
    approx_total_keys: int = 0
    memory_usage_calls: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def coverage(self) -> float:
        if self.approx_total_keys <= 0:
            return 0.0
        return min(1.0, max(0.0, self.sampled / self.approx_total_keys))

    def to_dict(self) -> dict:
        return {
            "durationMs": self.duration_ms,
            "sampled": self.sampled,
            "approxTotalKeys": self.approx_total_keys,
            "coverage": self.coverage,
            "memoryUsageCalls": self.memory_usage_calls,
            "errors": list(self.errors),
        }


def _check_buckets(name, buckets):
    if not buckets:
        raise ConfigurationError(f"{name} must not be empty")
    if buckets[0] != 0:
        raise ConfigurationError(f"{name} must start at 0, got {buckets[0]}")
    for lo, hi in zip(buckets, buckets[1:]):
        if hi <= lo:
            raise ConfigurationError(f"{name} must be strictly increasing: {buckets}")


@dataclass
class ScanConfig:
    dbs: List[int] = field(default_factory=lambda: [0])
    sample_limit: int = 50000
    scan_count: int = 1000
    ttl_buckets: List[int] = field(default_factory=lambda: list(DEFAULT_TTL_BUCKETS))
    idle_buckets: List[int] = field(default_factory=lambda: list(DEFAULT_IDLE_BUCKETS))
    size_top_n: int = 20
    delimiter: str = ":"
    prefix_depth: int = 3
    size_stride: int = 10
    match: Optional[str] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not self.dbs:
            raise ConfigurationError("at least one db index is required")
        if any(db < 0 for db in self.dbs):
            raise ConfigurationError(f"db indexes must be non-negative: {self.dbs}")
        if self.sample_limit < 1:
            raise ConfigurationError("sample_limit must be at least 1")
        if self.scan_count < 1:
            raise ConfigurationError("scan_count must be at least 1")
        if self.size_top_n < 0:
            raise ConfigurationError("size_top_n must not be negative")
        if self.size_stride < 1:
            raise ConfigurationError("size_stride must be at least 1")
        if self.prefix_depth < 1:
            raise ConfigurationError("prefix_depth must be at least 1")
        if not self.delimiter:
            raise ConfigurationError("delimiter must not be empty")
        _check_buckets("ttl_buckets", self.ttl_buckets)
        _check_buckets("idle_buckets", self.idle_buckets)


@dataclass
class ShardScan:
    """Keys and bookkeeping gathered from one shard, filled in as batches land."""

    name: str
    db: int = 0
    keys: List[KeyMeta] = field(default_factory=list)
    size_calls: int = 0
    approx_keys: int = 0
    error: Optional[str] = None
    complete: bool = False


@dataclass
class ScanResult:
    stats: SampleStats
    prefixes: List[PrefixAgg]
    top_n: Dict[str, List[KeyMeta]]

    def to_dict(self) -> dict:
        return {
            "sampleStats": self.stats.to_dict(),
            "aggregates": {"prefixes": [p.to_dict() for p in self.prefixes]},
            "topN": {t: [k.to_dict() for k in keys] for t, keys in self.top_n.items()},
        }
