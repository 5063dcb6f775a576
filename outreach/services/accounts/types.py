"""
Types for channel accounts (LinkedIn seats, mailboxes, voice lines).
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from outreach.core.timezone import parse_datetime


class AccountHealthState(str, Enum):
    """Health of a channel account as seen by the dispatcher."""

    ACTIVE = "active"
    RATE_LIMITED = "rate_limited"
    EXPIRED = "expired"
    CHECKPOINTED = "checkpointed"
    UNKNOWN = "unknown"

    @property
    def is_unusable(self) -> bool:
        """Expired/checkpointed accounts need a human to reconnect them."""
        return self in (AccountHealthState.EXPIRED, AccountHealthState.CHECKPOINTED)

    @classmethod
    def parse(cls, value: Any) -> "AccountHealthState":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class Account:
    """A credentialed sending identity on one channel."""

    id: str
    channel: str
    tenant_id: Optional[str] = None
    health_state: AccountHealthState = AccountHealthState.UNKNOWN
    name: str = ""
    provider_account_id: Optional[str] = None
    health_until: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    is_global: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.name or self.id[:8]

    @classmethod
    def from_db_row(cls, row: dict) -> "Account":
        state = row.get("health_state") or row.get("status") or AccountHealthState.UNKNOWN.value
        return cls(
            id=str(row["id"]),
            channel=row.get("channel", ""),
            tenant_id=row.get("tenant_id"),
            health_state=AccountHealthState.parse(state),
            name=row.get("name") or row.get("account_name") or "",
            provider_account_id=row.get("provider_account_id") or row.get("unipile_account_id"),
            health_until=parse_datetime(row.get("health_until")),
            connected_at=parse_datetime(row.get("connected_at")),
            is_global=bool(row.get("is_global", False)),
            metadata=row.get("metadata") or {},
        )


@dataclass
class HealthCheck:
    """Result of probing an account with the provider."""

    healthy: bool
    reason: Optional[str] = None
    state: Optional[AccountHealthState] = None
