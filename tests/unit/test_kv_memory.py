"""
Unit tests for in-memory key-value store implementation.

Tests cover:
- Connection lifecycle
- Reads
- Conditional commits
"""

import pytest

from dbaas.plandb_server.kv.base import KvConnectionError
from dbaas.plandb_server.kv.memory import InMemoryKeyValueStore


class TestInMemoryKeyValueStore:
    """Tests for InMemoryKeyValueStore."""

    @pytest.fixture
    def kv(self):
        """Create a fresh store."""
        return InMemoryKeyValueStore()

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, kv):
        """Test connection lifecycle."""
        assert not kv.is_connected
        assert not await kv.health_check()

        await kv.connect()
        assert kv.is_connected
        assert await kv.health_check()

        await kv.close()
        assert not kv.is_connected

    @pytest.mark.asyncio
    async def test_calls_require_connection(self, kv):
        with pytest.raises(KvConnectionError):
            await kv.get("a")
        with pytest.raises(KvConnectionError):
            await kv.compare_and_commit("a", None, {"a": "1"}, ())

    @pytest.mark.asyncio
    async def test_commit_when_guard_absent(self, kv):
        await kv.connect()

        assert await kv.compare_and_commit("a", None, {"a": "1", "b": "2"}, ())

        assert await kv.mget(["a", "b", "c"]) == ["1", "2", None]

    @pytest.mark.asyncio
    async def test_commit_rejected_on_mismatch(self, kv):
        await kv.connect()
        kv.put("a", "1")

        assert not await kv.compare_and_commit("a", None, {"b": "2"}, ["a"])
        assert not await kv.compare_and_commit("a", "0", {"b": "2"}, ["a"])

        assert kv.dump() == {"a": "1"}
        assert kv.rejected_count == 2

    @pytest.mark.asyncio
    async def test_commit_applies_writes_and_deletes(self, kv):
        await kv.connect()
        kv.put("a", "1")
        kv.put("old", "x")

        assert await kv.compare_and_commit("a", "1", {"a": "2"}, ["old", "missing"])

        assert kv.dump() == {"a": "2"}
        assert kv.commit_count == 1

    @pytest.mark.asyncio
    async def test_close_keeps_data(self, kv):
        await kv.connect()
        await kv.compare_and_commit("a", None, {"a": "1"}, ())
        await kv.close()

        await kv.connect()
        assert await kv.get("a") == "1"
