"""
LinkedIn channel via the Unipile API.

Actions:
- linkedin_connect: invitation, optionally with a note (the enrichment)
- linkedin_message: direct message to a connection
- linkedin_visit: profile view (fetches the profile)
- linkedin_follow: follow the profile

Every action first resolves the target's provider_id from the public
profile identifier in the lead's LinkedIn URL.
"""
import logging
import re
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from outreach.core.config import settings
from outreach.core.exceptions import ConfigurationError, OtherDispatchError
from outreach.services.accounts.types import Account, AccountHealthState, HealthCheck
from outreach.services.channels.base import (
    ChannelCapability,
    DispatchPayload,
    DispatchTarget,
    ProviderResponse,
    personalize,
)
from outreach.services.http_client import get_http_client

logger = logging.getLogger(__name__)

LINKEDIN_ACTIONS = frozenset({
    "linkedin_connect",
    "linkedin_message",
    "linkedin_visit",
    "linkedin_follow",
})

# Invitation notes are capped by LinkedIn
CONNECTION_NOTE_MAX_CHARS = 300

_PUBLIC_ID = re.compile(r"linkedin\.com/(?:in|pub)/([^/?#]+)", re.IGNORECASE)

_UNHEALTHY_STATES = {"disconnected", "error", "expired", "credentials"}


def extract_public_id(profile_url: Optional[str]) -> Optional[str]:
    """Public identifier from a profile URL (or the identifier itself)."""
    if not profile_url:
        return None
    match = _PUBLIC_ID.search(profile_url)
    if match:
        return match.group(1).strip()
    if "/" not in profile_url and " " not in profile_url:
        return profile_url.strip()
    return None


def _body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict):
        inner = data.get("data")
        return inner if isinstance(inner, dict) else data
    return {}


def _error_response(response: httpx.Response) -> ProviderResponse:
    data = _body(response)
    return ProviderResponse(
        success=False,
        provider_error_code=data.get("type") or data.get("code"),
        provider_message=data.get("detail") or data.get("message") or data.get("title"),
        status_code=response.status_code,
        data=data,
    )


class UnipileClient:
    """Thin Unipile REST client over the shared httpx client."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or settings.UNIPILE_API_URL or "").rstrip("/")
        self.api_key = api_key or settings.UNIPILE_API_KEY

    @property
    def headers(self) -> dict:
        return {
            "X-API-KEY": self.api_key or "",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        if not self.base_url:
            raise ConfigurationError("UNIPILE_API_URL is not configured")
        return f"{self.base_url}{path}"

    async def get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        client = await get_http_client()
        return await client.get(self._url(path), headers=self.headers, params=params)

    async def post(self, path: str, json: dict) -> httpx.Response:
        client = await get_http_client()
        return await client.post(self._url(path), headers=self.headers, json=json)


class UnipileLinkedInCapability(ChannelCapability):
    """LinkedIn actions through Unipile."""

    channel = "linkedin"
    actions = LINKEDIN_ACTIONS
    target_field = "profile_url"

    def __init__(self, client: Optional[UnipileClient] = None):
        self.client = client or UnipileClient()

    def build_payload(self, action: str, data: dict, config: dict) -> DispatchPayload:
        message = personalize(config.get("message"), data)

        if action == "linkedin_connect":
            # The note is optional: the bare strategy retries without it
            return DispatchPayload(
                action=action,
                enrichment={"message": message[:CONNECTION_NOTE_MAX_CHARS]},
            )
        if action == "linkedin_message":
            return DispatchPayload(action=action, content={"message": message})
        return DispatchPayload(action=action)

    async def send(
        self,
        target: DispatchTarget,
        payload: Dict[str, Any],
        account: Account,
    ) -> ProviderResponse:
        action = payload["action"]
        account_id = account.provider_account_id or account.id

        public_id = extract_public_id(target.profile_url)
        if not public_id:
            raise OtherDispatchError(
                f"Invalid LinkedIn URL for lead {target.lead_id}", error_code="invalid_recipient"
            )

        lookup = await self.client.get(f"/users/{public_id}", params={"account_id": account_id})
        if lookup.status_code == 404:
            raise OtherDispatchError(
                f"LinkedIn profile {public_id} not found", error_code="invalid_recipient", status_code=404
            )
        if lookup.status_code >= 400:
            return _error_response(lookup)
        profile = _body(lookup)

        if action == "linkedin_visit":
            logger.info(f"[Unipile] Profile visited: {public_id} via {account.label}")
            return ProviderResponse(success=True, status_code=lookup.status_code, data={"profile": profile})

        provider_id = profile.get("provider_id")
        if not provider_id:
            raise OtherDispatchError(f"No provider_id for {public_id}", error_code="lookup_failed")

        if action == "linkedin_connect":
            body = {"provider": "LINKEDIN", "account_id": account_id, "provider_id": provider_id}
            if payload.get("message"):
                body["message"] = payload["message"]
            response = await self.client.post("/users/invite", json=body)
        elif action == "linkedin_message":
            response = await self.client.post(
                "/chats",
                json={"account_id": account_id, "attendees_ids": [provider_id], "text": payload.get("message", "")},
            )
        elif action == "linkedin_follow":
            response = await self.client.post(
                "/users/follow",
                json={"account_id": account_id, "provider_id": provider_id},
            )
        else:
            raise OtherDispatchError(f"Unsupported LinkedIn action: {action}", error_code="unsupported_action")

        if response.status_code >= 400:
            return _error_response(response)

        data = _body(response)
        # Unipile sometimes reports errors with a 2xx status
        error_type = str(data.get("type") or "")
        if data.get("error") or "error" in error_type:
            return ProviderResponse(
                success=False,
                provider_error_code=error_type or None,
                provider_message=data.get("detail") or data.get("message"),
                status_code=response.status_code,
                data=data,
            )

        logger.info(f"[Unipile] {action} sent to {public_id} via {account.label}")
        return ProviderResponse(
            success=True,
            status_code=response.status_code,
            data={"provider_id": provider_id, **data},
        )


class UnipileHealthProbe:
    """AccountHealthProbe checking a LinkedIn account's connection state with Unipile."""

    def __init__(self, client: Optional[UnipileClient] = None):
        self.client = client or UnipileClient()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _fetch(self, account_id: str) -> httpx.Response:
        return await self.client.get(f"/accounts/{account_id}")

    async def check(self, account: Account) -> HealthCheck:
        """
        Probe the account.

        Raises:
            httpx.HTTPError: probe could not reach Unipile
        """
        response = await self._fetch(account.provider_account_id or account.id)

        if response.status_code == 401:
            return HealthCheck(healthy=False, reason="credentials expired", state=AccountHealthState.EXPIRED)
        if response.status_code == 404:
            return HealthCheck(healthy=False, reason="account not found", state=AccountHealthState.EXPIRED)
        response.raise_for_status()

        data = _body(response)
        if data.get("checkpoint"):
            checkpoint = data["checkpoint"]
            kind = checkpoint.get("type") if isinstance(checkpoint, dict) else checkpoint
            return HealthCheck(
                healthy=False,
                reason=f"checkpoint {kind}",
                state=AccountHealthState.CHECKPOINTED,
            )

        state = _connection_state(data)
        if state in _UNHEALTHY_STATES:
            return HealthCheck(healthy=False, reason=f"account state {state}", state=AccountHealthState.EXPIRED)

        return HealthCheck(healthy=True)


def _connection_state(data: dict) -> str:
    state = data.get("state") or data.get("status")
    if not state:
        sources = data.get("sources") or []
        if sources and isinstance(sources[0], dict):
            state = sources[0].get("status")
    return str(state or "").lower()
