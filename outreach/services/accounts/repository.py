"""
Repository for channel accounts.

Supabase-backed AccountSource. Read errors propagate so the engine can
retry the lead later instead of mistaking an outage for "no accounts".
"""
import logging
from datetime import datetime
from typing import List, Optional

from outreach.core.timezone import iso_utc
from outreach.services.accounts.types import Account, AccountHealthState
from outreach.services.supabase import get_supabase_client, run_query
from outreach.services.workflow.ports import AccountSource

logger = logging.getLogger(__name__)


class AccountRepository(AccountSource):
    """Channel account queries."""

    TABLE = "channel_accounts"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def list_for_tenant(self, tenant_id: str, channel: str) -> List[Account]:
        """Active accounts a tenant connected for a channel."""
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("channel", channel)
            .eq("is_active", True)
            .order("connected_at", desc=True)
            .execute()
        )
        return [Account.from_db_row(row) for row in (response.data or [])]

    async def list_global(self, channel: str) -> List[Account]:
        """Shared accounts usable by tenants without their own."""
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("*")
            .eq("is_global", True)
            .eq("channel", channel)
            .eq("is_active", True)
            .order("connected_at", desc=True)
            .execute()
        )
        return [Account.from_db_row(row) for row in (response.data or [])]

    async def persist_health(
        self,
        account_id: str,
        state: AccountHealthState,
        until: Optional[datetime] = None,
    ) -> None:
        """Store the health state so other workers and the UI can see it."""
        payload = {
            "health_state": state.value,
            "health_until": iso_utc(until) if until else None,
            "updated_at": iso_utc(),
        }
        await run_query(
            lambda: self.client.table(self.TABLE).update(payload).eq("id", account_id).execute()
        )
        logger.debug(f"[AccountRepository] Health of {account_id[:8]} stored as {state.value}")
