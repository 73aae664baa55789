import pytest
from redis.exceptions import ConnectionError

from keyspace_heatmap.metadata import MetadataCollector
from keyspace_heatmap.sizing import KEY_OVERHEAD_BYTES
from tests.fakes import FakeRedis


def ten_keys(**kw):
    data = {"k:%d" % i: ("string", "v" * (i + 1)) for i in range(10)}
    return FakeRedis(data, native_memory=False, **kw)


def raw(client):
    return sorted(client.data)


class TestCollect:
    @pytest.mark.asyncio
    async def test_single_pipeline_per_batch(self):
        client = ten_keys()
        batch = await MetadataCollector(client).collect(raw(client))
        assert client.pipelines == 1
        assert len(batch.keys) == 10

    @pytest.mark.asyncio
    async def test_fields_decoded(self):
        client = FakeRedis({"a": ("hash", {"f": "v"}), "b": ("zset", [("m", 1)])},
                           ttl={"a": 5000}, idle={"b": 42}, native_memory=False)
        batch = await MetadataCollector(client, db=3, size_stride=1).collect([b"a", b"b"])
        a, b = batch.keys
        assert (a.key, a.type, a.ttl_ms, a.db) == ("a", "hash", 5000, 3)
        assert (b.key, b.type, b.ttl_ms, b.idle_sec) == ("b", "zset", None, 42)

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        client = ten_keys()
        batch = await MetadataCollector(client).collect([])
        assert batch.keys == [] and batch.size_calls == 0
        assert client.pipelines == 0

    @pytest.mark.asyncio
    async def test_unknown_module_type_maps_to_other(self):
        client = FakeRedis({"j": ("ReJSON-RL", None)}, native_memory=False)
        batch = await MetadataCollector(client).collect([b"j"])
        assert batch.keys[0].type == "other"

    @pytest.mark.asyncio
    async def test_bitmap_reported_and_sized_as_string(self):
        client = FakeRedis({"flags": ("string", b"\x00\xff\x01")}, native_memory=False)
        batch = await MetadataCollector(client).collect([b"flags"])
        assert batch.keys[0].type == "string"
        assert batch.keys[0].est_bytes == 3 + KEY_OVERHEAD_BYTES


class TestDrops:
    @pytest.mark.asyncio
    async def test_vanished_key_dropped(self):
        client = ten_keys()
        keys = raw(client) + [b"gone"]
        batch = await MetadataCollector(client).collect(keys)
        assert [k.key for k in batch.keys] == ["k:%d" % i for i in range(10)]

    @pytest.mark.asyncio
    async def test_type_failure_drops_only_that_key(self):
        client = ten_keys()
        client.fail("type", "k:3")
        batch = await MetadataCollector(client).collect(raw(client))
        assert len(batch.keys) == 9
        assert "k:3" not in [k.key for k in batch.keys]

    @pytest.mark.asyncio
    async def test_ttl_failure_drops_key(self):
        client = ten_keys()
        client.fail("pttl", "k:4")
        batch = await MetadataCollector(client).collect(raw(client))
        assert "k:4" not in [k.key for k in batch.keys]

    @pytest.mark.asyncio
    async def test_idle_failure_keeps_key_without_idle(self):
        client = ten_keys(idle={"k:5": 9})
        client.fail("idletime", "k:5")
        batch = await MetadataCollector(client).collect(raw(client))
        meta = {k.key: k for k in batch.keys}["k:5"]
        assert meta.idle_sec is None

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self):
        client = ten_keys(down=True)
        with pytest.raises(ConnectionError):
            await MetadataCollector(client).collect([b"k:1"])


class TestSizeStride:
    @pytest.mark.asyncio
    async def test_default_stride_sizes_one_in_ten(self):
        client = FakeRedis({"k:%02d" % i: ("string", "v") for i in range(25)}, native_memory=False)
        batch = await MetadataCollector(client).collect(raw(client))
        sized = [k.key for k in batch.keys if k.est_bytes is not None]
        assert sized == ["k:00", "k:10", "k:20"]
        assert batch.size_calls == 3

    @pytest.mark.asyncio
    async def test_size_failure_keeps_other_nine(self):
        client = ten_keys()
        client.fail("strlen", "k:6")
        batch = await MetadataCollector(client, size_stride=1).collect(raw(client))
        assert len(batch.keys) == 10
        by_key = {k.key: k for k in batch.keys}
        assert by_key["k:6"].est_bytes is None
        assert all(m.est_bytes is not None for name, m in by_key.items() if name != "k:6")
        assert batch.size_calls == 10
