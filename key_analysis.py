import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from keyspace_heatmap.buckets import bytes_to_str, seconds_to_str
from keyspace_heatmap.errors import ConfigurationError
from keyspace_heatmap.scanner import scan_topology
from keyspace_heatmap.settings import get_settings
from keyspace_heatmap.topology import CLUSTER, SENTINEL, STANDALONE, Topology, parse_address


def build_parser(settings):
    parser = argparse.ArgumentParser(description="Redis keyspace sampling: prefix heatmap, TTL/idle spread, top keys")
    parser.add_argument("--host", default=settings.HOST, help="Redis Host")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Redis Port")
    parser.add_argument("--password", default=settings.PASSWORD, help="Redis Password")
    parser.add_argument("--tls", action="store_true", default=settings.TLS, help="Connect with TLS")
    parser.add_argument("--db", type=int, action="append", help="Key DB (repeatable)")
    parser.add_argument("--cluster", metavar="HOST:PORT", action="append", help="Cluster startup node (repeatable)")
    parser.add_argument("--sentinel", metavar="HOST:PORT", action="append", help="Sentinel node (repeatable)")
    parser.add_argument("--service", help="Sentinel master name")
    parser.add_argument("--sentinel-password", help="Sentinel Password")
    parser.add_argument("--pattern", default=None, help="Key Pattern")
    parser.add_argument("--limit", type=int, default=settings.SAMPLE_LIMIT, help="Max keys to sample")
    parser.add_argument("--count", type=int, default=settings.SCAN_COUNT, help="SCAN COUNT hint")
    parser.add_argument("--top", type=int, default=settings.SIZE_TOP_N, help="Top N per type")
    parser.add_argument("--prefix", default=settings.DELIMITER, help="Prefix Delimiter(ex: ':', '_')")
    parser.add_argument("--depth", type=int, default=settings.PREFIX_DEPTH, help="Prefix depth")
    parser.add_argument("--rows", type=int, default=30, help="Prefix rows to print")
    parser.add_argument("--timeout", type=float, default=settings.TIMEOUT, help="Scan deadline in seconds")
    parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def build_topology(args):
    if args.cluster:
        kind = CLUSTER
    elif args.sentinel:
        kind = SENTINEL
    else:
        kind = STANDALONE
    return Topology(
        kind=kind,
        host=args.host,
        port=args.port,
        password=args.password,
        tls=args.tls,
        nodes=[parse_address(n) for n in args.cluster or []],
        service_name=args.service,
        sentinel_hosts=[parse_address(n, 26379) for n in args.sentinel or []],
        sentinel_password=args.sentinel_password,
    )


def ttl_spread(hist):
    return " ".join(f"{label}={n}" for label, n in sorted(hist.items(), key=lambda x: -x[1]))


def print_report(result, rows):
    stats = result.stats
    print(f"🔍 Sampled Keys: {stats.sampled} / ~{stats.approx_total_keys} "
          f"({stats.coverage * 100:.1f}%) in {stats.duration_ms}ms, "
          f"{stats.memory_usage_calls} size lookups")
    print()

    print(f"{'Prefix':40} {'Count':>10} {'Est Size':>10}  TTL")
    print("-" * 90)
    for agg in result.prefixes[:rows]:
        print(f"{agg.prefix:40} {agg.count:>10} {bytes_to_str(agg.est_bytes):>10}  {ttl_spread(agg.ttl_hist)}")
    print()

    for dtype, keys in result.top_n.items():
        if not keys:
            continue
        print(f"📦 Collection : {dtype.upper()} (Top {len(keys)})")
        print(f"{'Key':60} {'DB':>4} {'Size':>10} {'TTL':>6}")
        print("-" * 83)
        for meta in keys:
            ttl = "-" if meta.ttl_ms is None else seconds_to_str(meta.ttl_ms // 1000)
            print(f"{meta.key:60} {meta.db:>4} {bytes_to_str(meta.est_bytes):>10} {ttl:>6}")
        print()

    if stats.errors:
        print("⚠️  Errors")
        for err in stats.errors:
            print(f"  {err}")


def main(argv=None):
    load_dotenv()
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        topology = build_topology(args)
        config = settings.scan_config(
            dbs=args.db,
            sample_limit=args.limit,
            scan_count=args.count,
            size_top_n=args.top,
            delimiter=args.prefix,
            prefix_depth=args.depth,
            match=args.pattern,
        )
        result = asyncio.run(scan_topology(topology, config, timeout=args.timeout))
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_report(result, args.rows)
    return 0


if __name__ == "__main__":
    sys.exit(main())
