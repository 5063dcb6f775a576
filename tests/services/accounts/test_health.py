"""
Tests for the account health registry and cooldown tables.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from outreach.core.timezone import utc_now
from outreach.services.accounts.health import (
    DEFAULT_COOLDOWN_MINUTES,
    AccountHealthRegistry,
    ProbeSession,
    cooldown_minutes,
)
from outreach.services.accounts.types import Account, AccountHealthState


class TestCooldownMinutes:

    @pytest.mark.parametrize("channel,code,status,expected", [
        ("linkedin", "cannot_resend_yet", None, 1440),
        ("linkedin", "weekly_limit", 429, 10080),
        ("linkedin", None, 429, 15),
        ("linkedin", "unknown", None, 60),
        ("email", "daily_quota_exceeded", None, 1440),
        ("voice", None, 429, 5),
        ("sms", None, None, DEFAULT_COOLDOWN_MINUTES),
    ])
    def test_most_specific_key(self, channel, code, status, expected):
        assert cooldown_minutes(channel, code, status) == expected


class TestAccountHealthState:

    def test_unusable_states(self):
        assert AccountHealthState.EXPIRED.is_unusable
        assert AccountHealthState.CHECKPOINTED.is_unusable
        assert not AccountHealthState.RATE_LIMITED.is_unusable

    def test_parse_unknown(self):
        assert AccountHealthState.parse("banana") == AccountHealthState.UNKNOWN


class TestAccountFromRow:

    def test_from_db_row(self):
        account = Account.from_db_row({
            "id": "acc-123456789",
            "channel": "linkedin",
            "tenant_id": "t1",
            "status": "rate_limited",
            "unipile_account_id": "uni-1",
            "connected_at": "2026-01-01T00:00:00Z",
        })
        assert account.health_state == AccountHealthState.RATE_LIMITED
        assert account.provider_account_id == "uni-1"
        assert account.label == "acc-1234"
        assert account.connected_at.year == 2026


class TestAccountHealthRegistry:

    @pytest.mark.asyncio
    async def test_stored_state_without_override(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account("a1", health_state=AccountHealthState.EXPIRED)

        assert await registry.state_of(account) == AccountHealthState.EXPIRED
        assert await registry.is_usable(account) is False

    @pytest.mark.asyncio
    async def test_override_wins(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account("a1")

        await registry.mark(account, AccountHealthState.CHECKPOINTED, reason="checkpoint_required")

        assert await registry.state_of(account) == AccountHealthState.CHECKPOINTED
        assert registry.snapshot()["a1"]["reason"] == "checkpoint_required"

    @pytest.mark.asyncio
    async def test_rate_limit_cooldown(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account("a1")

        until = await registry.mark_rate_limited(account, "cannot_resend_yet")

        assert await registry.in_cooldown(account) is True
        assert await registry.is_usable(account) is True
        assert until - utc_now() > timedelta(hours=23)
        assert await registry.cooldown_until(account) == until

    @pytest.mark.asyncio
    async def test_elapsed_cooldown_reads_active(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account("a1")

        await registry.mark(account, AccountHealthState.RATE_LIMITED, until=utc_now() - timedelta(seconds=1))

        assert await registry.state_of(account) == AccountHealthState.ACTIVE

    @pytest.mark.asyncio
    async def test_elapsed_stored_cooldown_reads_active(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account(
            "a1",
            health_state=AccountHealthState.RATE_LIMITED,
            health_until=utc_now() - timedelta(minutes=5),
        )

        assert await registry.state_of(account) == AccountHealthState.ACTIVE

    @pytest.mark.asyncio
    async def test_persists_through_source(self, make_account, fake_account_source):
        source = fake_account_source()
        registry = AccountHealthRegistry(source=source)
        account = make_account("a1")

        await registry.mark(account, AccountHealthState.EXPIRED)

        assert source.persisted == [("a1", AccountHealthState.EXPIRED, None)]

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged(self, make_account):
        source = AsyncMock()
        source.persist_health = AsyncMock(side_effect=ConnectionError("db down"))
        registry = AccountHealthRegistry(source=source)
        account = make_account("a1")

        await registry.mark(account, AccountHealthState.EXPIRED)

        assert await registry.state_of(account) == AccountHealthState.EXPIRED

    @pytest.mark.asyncio
    async def test_reset(self, make_account):
        registry = AccountHealthRegistry()
        account = make_account("a1")
        await registry.mark(account, AccountHealthState.EXPIRED)

        await registry.reset("a1")

        assert await registry.state_of(account) == AccountHealthState.ACTIVE


class TestProbeSession:

    @pytest.mark.asyncio
    async def test_claim_once(self):
        session = ProbeSession()

        assert await session.claim("a1") is True
        assert await session.claim("a1") is False
        assert "a1" in session
        assert "a2" not in session
