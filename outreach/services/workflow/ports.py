"""
Interfaces the engine consumes.

Persistence, activity history, provider APIs and lead generation live
behind these. The Supabase adapters in ``repository`` implement the store
side; tests use in-memory fakes.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach.services.accounts.types import Account, AccountHealthState, HealthCheck
from outreach.services.channels.base import ChannelCapability
from outreach.services.workflow.types import Campaign, Lead, LeadExecutionState


class LeadStore(ABC):
    """Campaign leads and their execution state."""

    @abstractmethod
    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        ...

    @abstractmethod
    async def set_execution_state(self, lead_id: str, state: LeadExecutionState) -> None:
        ...

    @abstractmethod
    async def list_leads_ready_for_processing(self, campaign_id: str) -> List[Lead]:
        """Non-terminal leads of a campaign, delayed ones included."""


class ActivityLog(ABC):
    """Write-only history of what happened to each lead."""

    @abstractmethod
    async def append(
        self,
        campaign_id: str,
        lead_id: str,
        step_id: str,
        type: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class GraphSource(ABC):
    """Campaign definitions."""

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Campaign:
        """
        Raises:
            NotFoundError: campaign does not exist
        """

    async def list_running_campaign_ids(self) -> List[str]:
        return []


class AccountSource(ABC):
    """Channel accounts and their stored health."""

    @abstractmethod
    async def list_for_tenant(self, tenant_id: str, channel: str) -> List[Account]:
        ...

    @abstractmethod
    async def list_global(self, channel: str) -> List[Account]:
        ...

    @abstractmethod
    async def persist_health(
        self,
        account_id: str,
        state: AccountHealthState,
        until: Optional[datetime] = None,
    ) -> None:
        ...


class AccountHealthProbe(ABC):
    @abstractmethod
    async def check(self, account: Account) -> HealthCheck:
        ...


class LeadGenerator(ABC):
    """Produces new leads for a campaign (lead_generation steps)."""

    @abstractmethod
    async def generate(self, campaign_id: str, config: Dict[str, Any]) -> int:
        """Returns the number of leads generated."""


__all__ = [
    "LeadStore",
    "ActivityLog",
    "GraphSource",
    "AccountSource",
    "AccountHealthProbe",
    "ChannelCapability",
    "LeadGenerator",
]
