from keyspace_heatmap.aggregate import (
    AggregationResult,
    PrefixAggregator,
    TopN,
    aggregate_keys,
    merge_results,
    prefixes_of,
)
from keyspace_heatmap.errors import ConfigurationError, HeatmapError
from keyspace_heatmap.metadata import MetadataCollector
from keyspace_heatmap.models import KeyMeta, PrefixAgg, SampleStats, ScanConfig, ScanResult
from keyspace_heatmap.scanner import sample_keyspace, scan_cluster, scan_standalone, scan_topology
from keyspace_heatmap.sizing import SizeEstimator
from keyspace_heatmap.topology import ShardSessions, Topology

__version__ = "0.1.0"
