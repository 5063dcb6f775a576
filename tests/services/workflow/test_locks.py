"""
Tests for per-lead lock backends.
"""
import pytest

from outreach.services.workflow.locks import LocalLeadLocks, RedisLeadLocks, build_lead_locks


class TestLocalLeadLocks:

    @pytest.mark.asyncio
    async def test_second_holder_is_refused(self):
        locks = LocalLeadLocks()

        async with locks.hold("l1") as first:
            async with locks.hold("l1") as second:
                assert first is True
                assert second is False

    @pytest.mark.asyncio
    async def test_released_after_use(self):
        locks = LocalLeadLocks()

        async with locks.hold("l1"):
            pass
        async with locks.hold("l1") as again:
            assert again is True

    @pytest.mark.asyncio
    async def test_independent_leads(self):
        locks = LocalLeadLocks()

        async with locks.hold("l1") as a, locks.hold("l2") as b:
            assert a and b


class TestRedisLeadLocks:

    @pytest.mark.asyncio
    async def test_acquires_lead_key(self, mock_redis):
        locks = RedisLeadLocks(timeout=30, client=mock_redis)

        async with locks.hold("l1") as acquired:
            assert acquired is True

        assert mock_redis.set.await_args.args[0] == "lock:lead:l1"
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_acquired_skips_release(self, mock_redis):
        mock_redis.set.return_value = None
        locks = RedisLeadLocks(client=mock_redis)

        async with locks.hold("l1") as acquired:
            assert acquired is False

        mock_redis.eval.assert_not_awaited()


class TestBuildLeadLocks:

    def test_backends(self):
        assert isinstance(build_lead_locks("local"), LocalLeadLocks)
        assert isinstance(build_lead_locks("redis"), RedisLeadLocks)
        assert isinstance(build_lead_locks("zookeeper"), LocalLeadLocks)
