"""
Failure classification tables.

Maps provider error codes and HTTP statuses to the failure classes that
drive the fallback strategy:

    rate_limited      quota/frequency limit; try another strategy or account
    credential_error  account unusable; skip to the next account
    other             anything else; next account

Some provider "errors" mean the action already happened (LinkedIn
invitation already pending) and are reported as success.

Error codes are matched before statuses. Codes are normalized: lower case
and without the "errors/" prefix Unipile puts on its problem types.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from outreach.services.accounts.types import AccountHealthState

logger = logging.getLogger(__name__)


class FailureClass(str, Enum):
    RATE_LIMITED = "rate_limited"
    CREDENTIAL_ERROR = "credential_error"
    OTHER = "other"


Rule = Tuple[FailureClass, Optional[AccountHealthState]]

_RATE = (FailureClass.RATE_LIMITED, AccountHealthState.RATE_LIMITED)
_EXPIRED = (FailureClass.CREDENTIAL_ERROR, AccountHealthState.EXPIRED)
_CHECKPOINT = (FailureClass.CREDENTIAL_ERROR, AccountHealthState.CHECKPOINTED)
_OTHER = (FailureClass.OTHER, None)


@dataclass(frozen=True)
class ClassificationTable:
    """Per-channel mapping of provider signals to failure classes."""

    channel: str
    codes: Dict[str, Rule] = field(default_factory=dict)
    statuses: Dict[int, Rule] = field(default_factory=dict)
    success_codes: FrozenSet[str] = frozenset()
    success_statuses: FrozenSet[int] = frozenset()


@dataclass
class Classification:
    """
    Outcome of classifying a provider response.

    ``failure_class`` is None when the response counts as success.
    """

    failure_class: Optional[FailureClass]
    code: Optional[str] = None
    health_state: Optional[AccountHealthState] = None
    already_done: bool = False

    @property
    def is_success(self) -> bool:
        return self.failure_class is None


LINKEDIN_TABLE = ClassificationTable(
    channel="linkedin",
    codes={
        "cannot_resend_yet": _RATE,
        "limit_exceeded": _RATE,
        "provider_limit": _RATE,
        "temporary_provider_limit": _RATE,
        "too_many_requests": _RATE,
        "rate_limit": _RATE,
        "weekly_limit": _RATE,
        "disconnected_account": _EXPIRED,
        "invalid_credentials": _EXPIRED,
        "expired_credentials": _EXPIRED,
        "account_not_found": _EXPIRED,
        "unauthorized": _EXPIRED,
        "checkpoint_error": _CHECKPOINT,
        "checkpoint_required": _CHECKPOINT,
        "account_restricted": _CHECKPOINT,
        "invalid_recipient": _OTHER,
        "resource_not_found": _OTHER,
        "not_allowed_inmail": _OTHER,
    },
    statuses={
        429: _RATE,
        401: _EXPIRED,
        403: _CHECKPOINT,
    },
    success_codes=frozenset({
        "already_invited",
        "already_invited_recently",
        "already_connected",
        "already_following",
    }),
    success_statuses=frozenset({409}),
)

EMAIL_TABLE = ClassificationTable(
    channel="email",
    codes={
        "rate_limited": _RATE,
        "daily_quota_exceeded": _RATE,
        "too_many_requests": _RATE,
        "auth_failed": _EXPIRED,
        "invalid_credentials": _EXPIRED,
        "mailbox_disconnected": _EXPIRED,
        "mailbox_suspended": _CHECKPOINT,
        "invalid_recipient": _OTHER,
        "bounced": _OTHER,
    },
    statuses={
        429: _RATE,
        401: _EXPIRED,
        403: _CHECKPOINT,
    },
)

VOICE_TABLE = ClassificationTable(
    channel="voice",
    codes={
        "concurrency_limit": _RATE,
        "rate_limited": _RATE,
        "too_many_requests": _RATE,
        "agent_not_found": _EXPIRED,
        "line_disconnected": _EXPIRED,
        "invalid_credentials": _EXPIRED,
        "invalid_number": _OTHER,
    },
    statuses={
        429: _RATE,
        401: _EXPIRED,
        403: _EXPIRED,
    },
)

DEFAULT_TABLE = ClassificationTable(
    channel="default",
    statuses={429: _RATE, 401: _EXPIRED},
)

TABLES: Dict[str, ClassificationTable] = {
    LINKEDIN_TABLE.channel: LINKEDIN_TABLE,
    EMAIL_TABLE.channel: EMAIL_TABLE,
    VOICE_TABLE.channel: VOICE_TABLE,
}


def normalize_code(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    normalized = str(code).strip().lower()
    if normalized.startswith("errors/"):
        normalized = normalized[len("errors/"):]
    return normalized.replace("-", "_").replace(" ", "_") or None


def classify(
    channel: str,
    error_code: Optional[str] = None,
    status_code: Optional[int] = None,
) -> Classification:
    """
    Classify a failed provider response.

    Args:
        channel: channel name selecting the table
        error_code: provider error code/type
        status_code: HTTP status

    Returns:
        Classification (failure_class None means "treat as success")
    """
    table = TABLES.get(channel, DEFAULT_TABLE)
    code = normalize_code(error_code)

    if code and code in table.success_codes:
        return Classification(failure_class=None, code=code, already_done=True)
    if code and code in table.codes:
        failure_class, state = table.codes[code]
        return Classification(failure_class=failure_class, code=code, health_state=state)

    if status_code in table.success_statuses:
        return Classification(failure_class=None, code=code, already_done=True)
    if status_code in table.statuses:
        failure_class, state = table.statuses[status_code]
        return Classification(failure_class=failure_class, code=code, health_state=state)

    if code or status_code:
        logger.debug(
            f"[Classification] Unmapped {channel} failure code={code} status={status_code}"
        )
    return Classification(failure_class=FailureClass.OTHER, code=code)
