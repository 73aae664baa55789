from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError, ResponseError

from keyspace_heatmap.sizing import KEY_OVERHEAD_BYTES, STREAM_ENTRY_BYTES, SizeEstimator, encoded_len
from tests.fakes import FakeRedis


def heuristic_client(data):
    return FakeRedis(data, native_memory=False)


class TestNativeMemoryUsage:
    @pytest.mark.asyncio
    async def test_positive_value_used_directly(self):
        client = FakeRedis({"k": ("string", "abc")})
        client.memory[b"k"] = 1234
        assert await SizeEstimator(client).estimate(b"k", "string") == 1234

    @pytest.mark.asyncio
    async def test_nil_reply_means_no_estimate(self):
        client = FakeRedis({})
        assert await SizeEstimator(client).estimate(b"gone", "string") is None

    @pytest.mark.asyncio
    async def test_zero_falls_back_to_heuristic(self):
        client = FakeRedis({"k": ("string", "abcd")})
        assert await SizeEstimator(client).estimate(b"k", "string") == 4 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_unknown_command_disables_native_path(self):
        client = FakeRedis({"k": ("string", "ab")}, native_memory=False)
        estimator = SizeEstimator(client)
        assert await estimator.estimate(b"k", "string") == 2 + KEY_OVERHEAD_BYTES
        assert estimator.native_available is False


class TestHeuristics:
    @pytest.mark.asyncio
    async def test_string_exact_byte_length(self):
        client = heuristic_client({"k": ("string", "héllo")})
        assert await SizeEstimator(client).estimate(b"k", "string") == 6 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_hash_extrapolates_average_pair(self):
        fields = {"f%02d" % i: "v" * 7 for i in range(40)}  # 3 + 7 bytes per pair
        client = heuristic_client({"h": ("hash", fields)})
        assert await SizeEstimator(client).estimate(b"h", "hash") == 40 * 10 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_list_samples_ten(self):
        items = ["aaaa"] * 10 + ["b" * 100] * 10
        client = heuristic_client({"l": ("list", items)})
        assert await SizeEstimator(client).estimate(b"l", "list") == 20 * 4 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_zset_counts_member_and_score(self):
        items = [("m%d" % i, 1.5) for i in range(5)]  # "m0" + "1.5"
        client = heuristic_client({"z": ("zset", items)})
        assert await SizeEstimator(client).estimate(b"z", "zset") == 5 * 5 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_set_samples_twenty(self):
        members = ["xx"] * 20 + ["y" * 50] * 20
        client = heuristic_client({"s": ("set", members)})
        assert await SizeEstimator(client).estimate(b"s", "set") == 40 * 2 + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_stream_uses_entry_constant(self):
        client = heuristic_client({"x": ("stream", 7)})
        assert await SizeEstimator(client).estimate(b"x", "stream") == 7 * STREAM_ENTRY_BYTES + KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_unknown_type_is_overhead_only(self):
        client = heuristic_client({"j": ("other", None)})
        assert await SizeEstimator(client).estimate(b"j", "other") == KEY_OVERHEAD_BYTES

    @pytest.mark.asyncio
    async def test_empty_collection(self):
        client = heuristic_client({"h": ("hash", {})})
        assert await SizeEstimator(client).estimate(b"h", "hash") == KEY_OVERHEAD_BYTES


class TestFailures:
    @pytest.mark.asyncio
    async def test_empty_hscan_page_of_large_hash_is_absent(self):
        client = heuristic_client({"h": ("hash", {"f%d" % i: "v" for i in range(500)})})
        client.hscan = AsyncMock(return_value=(17, {}))
        assert await SizeEstimator(client).estimate(b"h", "hash") is None

    @pytest.mark.asyncio
    async def test_empty_sscan_page_of_large_set_is_absent(self):
        client = heuristic_client({"s": ("set", ["m%d" % i for i in range(500)])})
        client.sscan = AsyncMock(return_value=(42, []))
        assert await SizeEstimator(client).estimate(b"s", "set") is None

    @pytest.mark.asyncio
    async def test_heuristic_failure_is_absent_not_zero(self):
        client = heuristic_client({"h": ("hash", {"a": "b"})})
        client.fail("hscan", "h")
        assert await SizeEstimator(client).estimate(b"h", "hash") is None

    @pytest.mark.asyncio
    async def test_connection_failure_is_absent(self):
        client = heuristic_client({"k": ("string", "v")})
        client.fail("strlen", "k", ConnectionError("reset"))
        assert await SizeEstimator(client).estimate(b"k", "string") is None

    @pytest.mark.asyncio
    async def test_transient_native_error_keeps_native_path(self):
        client = FakeRedis({"k": ("string", "abc")})
        client.fail("memory", "k", ConnectionError("blip"))
        estimator = SizeEstimator(client)
        assert await estimator.estimate(b"k", "string") == 3 + KEY_OVERHEAD_BYTES
        assert estimator.native_available is True

    @pytest.mark.asyncio
    async def test_acl_denial_switches_to_heuristic(self):
        client = FakeRedis({"k": ("string", "abc")})
        client.fail("memory", "k", ResponseError("NOPERM this user has no permissions to run the 'memory' command"))
        estimator = SizeEstimator(client)
        assert await estimator.estimate(b"k", "string") == 3 + KEY_OVERHEAD_BYTES
        assert estimator.native_available is False


def test_encoded_len():
    assert encoded_len(b"abc") == 3
    assert encoded_len("é") == 2
    assert encoded_len(1.5) == 3
