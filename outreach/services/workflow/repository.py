"""
Supabase adapters for the workflow ports.

Tables:
- campaigns: id, tenant_id, name, status, workflow (json), is_deleted
- campaign_leads: id, campaign_id, tenant_id, lead_data (json),
  current_step_id, status, last_result (json), delay_until, error, is_deleted
- campaign_lead_activities: append-only activity history
"""
import logging
from typing import Any, Dict, List, Optional

from outreach.core.exceptions import NotFoundError
from outreach.core.timezone import iso_utc
from outreach.services.supabase import get_supabase_client, run_query
from outreach.services.workflow.ports import ActivityLog, GraphSource, LeadStore
from outreach.services.workflow.types import Campaign, Lead, LeadExecutionState, LeadStatus

logger = logging.getLogger(__name__)

RUNNING_CAMPAIGN_STATUS = "running"


class _SupabaseRepository:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client


class SupabaseLeadStore(_SupabaseRepository, LeadStore):
    """Lead rows and their execution state."""

    TABLE = "campaign_leads"

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("*")
            .eq("id", lead_id)
            .eq("is_deleted", False)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return Lead.from_db_row(rows[0]) if rows else None

    async def set_execution_state(self, lead_id: str, state: LeadExecutionState) -> None:
        payload = state.to_dict()
        payload["updated_at"] = iso_utc()
        if state.status == LeadStatus.COMPLETED:
            payload["completed_at"] = iso_utc()

        await run_query(
            lambda: self.client.table(self.TABLE).update(payload).eq("id", lead_id).execute()
        )
        logger.debug(
            f"[LeadStore] Lead {lead_id} -> {state.status.value} at {state.current_step_id}"
        )

    async def list_leads_ready_for_processing(self, campaign_id: str) -> List[Lead]:
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("*")
            .eq("campaign_id", campaign_id)
            .eq("is_deleted", False)
            .in_("status", [LeadStatus.ACTIVE.value, LeadStatus.DELAYED.value])
            .execute()
        )
        return [Lead.from_db_row(row) for row in (response.data or [])]


class SupabaseActivityLog(_SupabaseRepository, ActivityLog):
    """Appends to campaign_lead_activities."""

    TABLE = "campaign_lead_activities"

    async def append(
        self,
        campaign_id: str,
        lead_id: str,
        step_id: str,
        type: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        row = {
            "campaign_id": campaign_id,
            "campaign_lead_id": lead_id,
            "step_id": step_id,
            "action_type": type,
            "status": status,
            "metadata": metadata or {},
            "error_message": (metadata or {}).get("error"),
            "created_at": iso_utc(),
        }
        await run_query(lambda: self.client.table(self.TABLE).insert(row).execute())


class SupabaseGraphSource(_SupabaseRepository, GraphSource):
    """Campaign definitions."""

    TABLE = "campaigns"

    async def get_campaign(self, campaign_id: str) -> Campaign:
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("*")
            .eq("id", campaign_id)
            .eq("is_deleted", False)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            raise NotFoundError("Campaign", campaign_id)
        return Campaign.from_db_row(rows[0])

    async def list_running_campaign_ids(self) -> List[str]:
        response = await run_query(
            lambda: self.client.table(self.TABLE)
            .select("id")
            .eq("status", RUNNING_CAMPAIGN_STATUS)
            .eq("is_deleted", False)
            .execute()
        )
        return [str(row["id"]) for row in (response.data or [])]
