"""
Prefix statistics and per-type top-N, folded one KeyMeta at a time.

Every partial result produced here can be merged with ``merge_results``; the
fold is commutative, so shard arrival order never changes the outcome.
"""
from __future__ import annotations

import heapq
from collections import defaultdict
from typing import Dict, Iterable, List

from keyspace_heatmap.buckets import idle_label, ttl_label
from keyspace_heatmap.models import KeyMeta, PrefixAgg, ScanConfig, TypeStats


def prefixes_of(key: str, delimiter: str, depth: int) -> List[str]:
    parts = key.split(delimiter)
    return [delimiter.join(parts[:i]) for i in range(1, min(len(parts), depth) + 1)]


class _Ranked:
    # heap order: the root is the entry that loses first
    __slots__ = ("meta",)

    def __init__(self, meta: KeyMeta):
        self.meta = meta

    def rank(self):
        return (-self.meta.est_bytes, self.meta.key, self.meta.db)

    def __lt__(self, other):
        return self.rank() > other.rank()


class TopN:
    """Fixed-capacity min-heap of the largest keys by estimated size."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._heap: List[_Ranked] = []

    def offer(self, meta: KeyMeta) -> bool:
        if meta.est_bytes is None or self.capacity <= 0:
            return False
        entry = _Ranked(meta)
        if len(self._heap) < self.capacity:
            heapq.heappush(self._heap, entry)
            return True
        if self._heap[0] < entry:
            heapq.heapreplace(self._heap, entry)
            return True
        return False

    def items(self) -> List[KeyMeta]:
        return [e.meta for e in sorted(self._heap, key=_Ranked.rank)]

    def __len__(self):
        return len(self._heap)

    def __eq__(self, other):
        if not isinstance(other, TopN):
            return NotImplemented
        return self.capacity == other.capacity and self.items() == other.items()

    def __repr__(self):
        return "TopN(%d, %r)" % (self.capacity, [m.key for m in self.items()])


class AggregationResult:
    def __init__(self, size_top_n: int, prefixes=None, top_n=None):
        self.size_top_n = size_top_n
        self.prefixes: Dict[str, PrefixAgg] = prefixes if prefixes is not None else {}
        self.top_n: Dict[str, TopN] = top_n if top_n is not None else {}

    def sorted_prefixes(self) -> List[PrefixAgg]:
        return sorted(self.prefixes.values(), key=lambda p: (-p.est_bytes, p.prefix))

    def top_keys(self) -> Dict[str, List[KeyMeta]]:
        return {t: self.top_n[t].items() for t in sorted(self.top_n)}

    def __eq__(self, other):
        if not isinstance(other, AggregationResult):
            return NotImplemented
        return (
            self.size_top_n == other.size_top_n
            and self.prefixes == other.prefixes
            and self.top_n == other.top_n
        )

    def __repr__(self):
        return "AggregationResult(prefixes=%d, types=%s)" % (
            len(self.prefixes), sorted(self.top_n))


class PrefixAggregator:
    def __init__(self, config: ScanConfig):
        self.config = config
        self._prefixes: Dict[str, PrefixAgg] = {}
        self._top_n: Dict[str, TopN] = {}

    def add(self, meta: KeyMeta):
        cfg = self.config
        ttl = ttl_label(meta.ttl_ms, cfg.ttl_buckets)
        idle = None if meta.idle_sec is None else idle_label(meta.idle_sec, cfg.idle_buckets)

        for prefix in prefixes_of(meta.key, cfg.delimiter, cfg.prefix_depth):
            agg = self._prefixes.get(prefix)
            if agg is None:
                agg = self._prefixes[prefix] = PrefixAgg(prefix)
            agg.count += 1
            agg.ttl_hist[ttl] = agg.ttl_hist.get(ttl, 0) + 1
            if idle is not None:
                agg.idle_hist[idle] = agg.idle_hist.get(idle, 0) + 1
            stats = agg.by_type.setdefault(meta.type, TypeStats())
            stats.count += 1
            if meta.est_bytes is not None:
                agg.est_bytes += meta.est_bytes
                stats.est_bytes += meta.est_bytes

        top = self._top_n.get(meta.type)
        if top is None:
            top = self._top_n[meta.type] = TopN(cfg.size_top_n)
        top.offer(meta)

    def extend(self, metas: Iterable[KeyMeta]):
        for meta in metas:
            self.add(meta)
        return self

    def result(self) -> AggregationResult:
        return AggregationResult(self.config.size_top_n, self._prefixes, self._top_n)


def aggregate_keys(metas: Iterable[KeyMeta], config: ScanConfig) -> AggregationResult:
    return PrefixAggregator(config).extend(metas).result()


def _add_counts(into: Dict[str, int], counts: Dict[str, int]):
    for label, n in counts.items():
        into[label] = into.get(label, 0) + n


def merge_results(results: Iterable[AggregationResult]) -> AggregationResult:
    results = list(results)
    if not results:
        raise ValueError("merge_results needs at least one partial result")
    capacity = results[0].size_top_n

    prefixes: Dict[str, PrefixAgg] = {}
    candidates = defaultdict(list)
    for part in results:
        for name, agg in part.prefixes.items():
            merged = prefixes.get(name)
            if merged is None:
                prefixes[name] = agg.copy()
                continue
            merged.count += agg.count
            merged.est_bytes += agg.est_bytes
            _add_counts(merged.ttl_hist, agg.ttl_hist)
            _add_counts(merged.idle_hist, agg.idle_hist)
            for t, stats in agg.by_type.items():
                into = merged.by_type.setdefault(t, TypeStats())
                into.count += stats.count
                into.est_bytes += stats.est_bytes
        for t, top in part.top_n.items():
            candidates[t].extend(top.items())

    top_n = {}
    for t, metas in candidates.items():
        top = top_n[t] = TopN(capacity)
        for meta in metas:
            top.offer(meta)
    return AggregationResult(capacity, prefixes, top_n)
