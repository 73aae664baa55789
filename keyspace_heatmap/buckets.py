from bisect import bisect_right
from typing import Optional, Sequence

PERSISTENT = "persistent"


def bucket_label(value: int, buckets: Sequence[int]) -> str:
    """Label of the half-open interval ``[b_i, b_i+1)`` holding ``value`` (seconds)."""
    i = bisect_right(buckets, value) - 1
    if i < 0:
        i = 0
    if i >= len(buckets) - 1:
        return ">=%ds" % buckets[-1]
    return "%d-%ds" % (buckets[i], buckets[i + 1])


def ttl_label(ttl_ms: Optional[int], buckets: Sequence[int]) -> str:
    if ttl_ms is None:
        return PERSISTENT
    return bucket_label(ttl_ms // 1000, buckets)


def idle_label(idle_sec: int, buckets: Sequence[int]) -> str:
    return bucket_label(idle_sec, buckets)


def bytes_to_str(n):
    if n < 1024:
        return '%dB' % n
    if n < 1024 * 1024:
        return '%.1fKB' % (n / 1024)
    if n < 1024 * 1024 * 1024:
        return '%.1fMB' % (n / (1024 * 1024))
    return '%.1fGB' % (n / (1024 * 1024 * 1024))


def seconds_to_str(sec):
    if sec < 60:
        return '%ds' % sec
    if sec < 3600:
        return '%dm' % round(sec / 60)
    if sec < 86400:
        return '%dh' % round(sec / 3600)
    return '%dd' % round(sec / 86400)
