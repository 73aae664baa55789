"""
Connection topology and the per-shard client sessions the scanner runs on.

Every shard gets its own client (and so its own connection pool): one per DB
index for standalone and sentinel deployments, one per master for clusters.
Sessions are opened and closed explicitly by whoever owns the scan.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import redis.asyncio as aioredis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.sentinel import Sentinel

from keyspace_heatmap.errors import ConfigurationError

logger = logging.getLogger(__name__)

STANDALONE = "standalone"
CLUSTER = "cluster"
SENTINEL = "sentinel"
KINDS = (STANDALONE, CLUSTER, SENTINEL)

DEFAULT_PORT = 6379
SOCKET_TIMEOUT = 5


def parse_address(addr: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    host, _, port = addr.rpartition(":")
    if not host:
        return addr, default_port
    try:
        return host, int(port)
    except ValueError:
        raise ConfigurationError(f"bad port in address {addr!r}")


@dataclass
class Topology:
    kind: str = STANDALONE
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    password: Optional[str] = None
    tls: bool = False
    nodes: List[Tuple[str, int]] = field(default_factory=list)
    service_name: Optional[str] = None
    sentinel_hosts: List[Tuple[str, int]] = field(default_factory=list)
    sentinel_password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> Topology:
        """Parse ``host[:port[:password]]``."""
        parts = url.split(':', 2)
        port = DEFAULT_PORT
        passwd = None
        if len(parts) > 1 and parts[1]:
            try:
                port = int(parts[1])
            except ValueError:
                raise ConfigurationError(f"bad port in {url!r}")
        if len(parts) > 2:
            passwd = parts[2]
        return cls(kind=STANDALONE, host=parts[0] or "127.0.0.1", port=port, password=passwd)

    def validate(self):
        if self.kind not in KINDS:
            raise ConfigurationError(f"unsupported connection kind: {self.kind!r}")
        if self.kind == CLUSTER and not self.nodes:
            raise ConfigurationError("cluster hosts required for cluster connection")
        if self.kind == SENTINEL and (not self.service_name or not self.sentinel_hosts):
            raise ConfigurationError("sentinel service name and hosts required for sentinel connection")

    @property
    def concurrent(self) -> bool:
        return self.kind == CLUSTER


@dataclass
class Shard:
    name: str
    client: object
    db: int = 0


class ShardSessions:
    def __init__(self, topology: Topology, dbs: Sequence[int] = (0,), shards: Optional[List[Shard]] = None):
        topology.validate()
        self.topology = topology
        self.dbs = list(dbs)
        self.shards: List[Shard] = list(shards) if shards is not None else []
        self._owned = shards is None
        self._sentinel: Optional[Sentinel] = None

    def _client_kwargs(self):
        return dict(
            password=self.topology.password,
            ssl=self.topology.tls,
            decode_responses=False,
            socket_connect_timeout=SOCKET_TIMEOUT,
            socket_timeout=SOCKET_TIMEOUT,
        )

    async def open(self) -> ShardSessions:
        if self.shards:
            return self
        topo = self.topology
        if topo.kind == STANDALONE:
            self.shards = [
                Shard("DB %d" % db, aioredis.Redis(host=topo.host, port=topo.port, db=db, **self._client_kwargs()), db)
                for db in self.dbs
            ]
        elif topo.kind == SENTINEL:
            self._sentinel = Sentinel(
                topo.sentinel_hosts,
                sentinel_kwargs={"password": topo.sentinel_password},
                password=topo.password,
                ssl=topo.tls,
                socket_timeout=SOCKET_TIMEOUT,
            )
            self.shards = [
                Shard("DB %d" % db, self._sentinel.master_for(topo.service_name, db=db, decode_responses=False), db)
                for db in self.dbs
            ]
        else:
            self.shards = [
                Shard("Node %s:%d" % (host, port), aioredis.Redis(host=host, port=port, **self._client_kwargs()), 0)
                for host, port in await self.discover_primaries()
            ]
        logger.info("opened %d %s shard session(s)", len(self.shards), topo.kind)
        return self

    async def discover_primaries(self) -> List[Tuple[str, int]]:
        topo = self.topology
        cluster = RedisCluster(
            startup_nodes=[ClusterNode(host, port) for host, port in topo.nodes],
            password=topo.password,
            ssl=topo.tls,
        )
        try:
            await cluster.initialize()
            return [(node.host, node.port) for node in cluster.get_primaries()]
        finally:
            await cluster.aclose()

    async def close(self):
        if not self._owned:
            return
        for shard in self.shards:
            await shard.client.aclose()
        self.shards = []
        if self._sentinel is not None:
            for s in self._sentinel.sentinels:
                await s.aclose()
            self._sentinel = None

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, *exc):
        await self.close()
