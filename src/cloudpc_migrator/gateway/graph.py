"""
Microsoft Graph gateway.

Talks to the Windows 365 endpoints of Microsoft Graph:
- Cloud PCs filtered by user principal name
- Provisioning policies expanded with their group assignments
- Group membership changes, checked before acting
- The endGracePeriod action

Acquiring a bearer token is out of scope; pass a static token through
GraphConfig or a (sync or async) token provider.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import aiohttp

from ..config.gateway import GraphConfig
from ..errors import (
    ErrorContext,
    GatewayAuthError,
    GatewayError,
    GatewayNotFoundError,
    TransientGatewayError,
    error_from_status,
)
from ..resources import MembershipResult, ResourceInfo, ResourceStatus
from .base import ResourceGateway

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], "str | Awaitable[str]"]

CLOUD_PCS_PATH = "/deviceManagement/virtualEndpoint/cloudPCs"
POLICIES_PATH = "/deviceManagement/virtualEndpoint/provisioningPolicies"


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(data: Any, status: int) -> str:
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    if isinstance(data, str) and data:
        return data
    return f"HTTP {status}"


class GraphGateway(ResourceGateway):
    """ResourceGateway backed by Microsoft Graph."""

    def __init__(
        self,
        config: GraphConfig | None = None,
        *,
        token_provider: TokenProvider | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config or GraphConfig()
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None
        self._upn_cache: dict[str, str] = {}

    async def __aenter__(self) -> GraphGateway:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )
            self._owns_session = True
        return self._session

    async def _token(self) -> str:
        if self._token_provider is not None:
            token = self._token_provider()
            if inspect.isawaitable(token):
                token = await token
            return token
        if self.config.access_token:
            return self.config.access_token
        raise GatewayAuthError("No Graph access token configured")

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> tuple[int, dict[str, str], Any]:
        """Perform one HTTP call and return (status, headers, body)."""
        headers = {
            "Authorization": f"Bearer {await self._token()}",
            "Accept": "application/json",
        }
        session = self._get_session()
        try:
            async with session.request(
                method, url, params=params, json=json_body, headers=headers
            ) as response:
                if response.content_type == "application/json":
                    body: Any = await response.json()
                else:
                    body = await response.text()
                return response.status, dict(response.headers), body
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientGatewayError(
                f"{method} {url} failed: {exc or type(exc).__name__}",
                context=ErrorContext(operation=f"{method} {url}"),
                cause=exc,
            ) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        allow: tuple[int, ...] = (),
    ) -> tuple[int, Any]:
        """Call Graph; non-2xx statuses not listed in ``allow`` raise."""
        url = path if path.startswith("http") else f"{self.config.base_url}{path}"
        status, headers, body = await self._send(method, url, params=params, json_body=json_body)
        if 200 <= status < 300 or status in allow:
            return status, body
        raise error_from_status(
            status,
            _error_message(body, status),
            retry_after=_parse_retry_after(headers.get("Retry-After")),
            context=ErrorContext(operation=f"{method} {path}"),
        )

    async def _get_paged(self, path: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        """GET a collection, following @odata.nextLink."""
        items: list[dict[str, Any]] = []
        url: str | None = path
        while url:
            _, body = await self._request("GET", url, params=params)
            items.extend(body.get("value", []))
            url = body.get("@odata.nextLink")
            params = None  # nextLink carries the query
        return items

    # -------------------------------------------------------------------------
    # ResourceGateway
    # -------------------------------------------------------------------------

    async def get_user_id(self, user_principal_name: str) -> str | None:
        status, body = await self._request(
            "GET",
            f"/users/{quote(user_principal_name, safe='@')}",
            params={"$select": "id,userPrincipalName"},
            allow=(404,),
        )
        if status == 404:
            return None
        user_id = body["id"]
        self._upn_cache[user_id] = body.get("userPrincipalName") or user_principal_name
        return user_id

    async def _user_principal_name(self, user_id: str) -> str:
        if user_id not in self._upn_cache:
            _, body = await self._request(
                "GET",
                f"/users/{quote(user_id)}",
                params={"$select": "userPrincipalName"},
            )
            self._upn_cache[user_id] = body["userPrincipalName"]
        return self._upn_cache[user_id]

    async def list_resources_for_user(self, user_id: str) -> list[ResourceInfo]:
        upn = await self._user_principal_name(user_id)
        items = await self._get_paged(
            CLOUD_PCS_PATH,
            params={"$filter": f"userPrincipalName eq '{_odata_quote(upn)}'"},
        )
        return [self._to_resource(item) for item in items]

    @staticmethod
    def _to_resource(item: dict[str, Any]) -> ResourceInfo:
        return ResourceInfo(
            id=item["id"],
            name=item.get("managedDeviceName") or item.get("displayName") or item["id"],
            status=ResourceStatus.parse(item.get("status")),
            service_plan=item.get("servicePlanId"),
            policy_id=item.get("provisioningPolicyId"),
        )

    async def list_policies_for_group(self, group_id: str) -> set[str]:
        policies = await self._get_paged(POLICIES_PATH, params={"$expand": "assignments"})
        matched: set[str] = set()
        for policy in policies:
            for assignment in policy.get("assignments") or []:
                target = assignment.get("target") or {}
                if target.get("groupId") == group_id:
                    matched.add(policy["id"])
        return matched

    async def _is_member(self, user_id: str, group_id: str) -> bool:
        _, body = await self._request(
            "POST",
            f"/users/{quote(user_id)}/checkMemberGroups",
            json_body={"groupIds": [group_id]},
        )
        return group_id in body.get("value", [])

    async def remove_membership(self, user_id: str, group_id: str) -> MembershipResult:
        if not await self._is_member(user_id, group_id):
            return MembershipResult.ALREADY_ABSENT
        status, _ = await self._request(
            "DELETE",
            f"/groups/{quote(group_id)}/members/{quote(user_id)}/$ref",
            allow=(404,),
        )
        if status == 404:
            return MembershipResult.ALREADY_ABSENT
        return MembershipResult.OK

    async def add_membership(self, user_id: str, group_id: str) -> MembershipResult:
        if await self._is_member(user_id, group_id):
            return MembershipResult.ALREADY_PRESENT
        status, body = await self._request(
            "POST",
            f"/groups/{quote(group_id)}/members/$ref",
            json_body={"@odata.id": f"{self.config.base_url}/directoryObjects/{user_id}"},
            allow=(400,),
        )
        if status == 400:
            message = _error_message(body, status)
            if "already exist" in message.lower():
                return MembershipResult.ALREADY_PRESENT
            raise GatewayError(message, http_status=status)
        return MembershipResult.OK

    async def end_grace_period(self, resource_id: str) -> None:
        try:
            await self._request("POST", f"{CLOUD_PCS_PATH}/{quote(resource_id)}/endGracePeriod")
        except GatewayNotFoundError:
            logger.info("Cloud PC %s no longer exists; nothing to end", resource_id)


__all__ = ["GraphGateway", "TokenProvider"]
