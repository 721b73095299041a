"""
Atlassian organization admin API client.

Covers the four calls the lifecycle reconciler needs: a cursor-paginated
directory user listing, per-account last-active lookup, suspend and delete.
Single-account calls go through the bounded retry policy; the bulk listing
does not, and gives up with partial results when rate limited.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx
import structlog

from app.modules.identity_sync.domain.types import (
    ActivityRecord,
    ProductActivity,
    TenantAccountStatus,
    TenantUser,
)
from app.shared.core.exceptions import (
    DirectoryResolutionError,
    ExternalAPIError,
    RetryableAPIError,
)
from app.shared.core.http import get_http_client
from app.shared.core.identity import parse_timestamp
from app.shared.core.retry import RETRYABLE_STATUS_CODES, call_with_retry

logger = structlog.get_logger()

_ATLASSIAN_API_URL = "https://api.atlassian.com"
_LISTING_PAGE_SIZE = 100
MAX_LISTING_PAGES = 50
SUSPEND_MESSAGE = "Suspended by automated license management system"

_STATUS_MAP = {
    "active": TenantAccountStatus.ACTIVE,
    "suspended": TenantAccountStatus.INACTIVE,
    "inactive": TenantAccountStatus.INACTIVE,
    "deactivated": TenantAccountStatus.INACTIVE,
    "closed": TenantAccountStatus.CLOSED,
    "revoked": TenantAccountStatus.CLOSED,
}


def _resolve_status(record: dict[str, Any]) -> Optional[TenantAccountStatus]:
    # membershipStatus reflects product access in the org. The global
    # accountStatus is not a substitute for it.
    raw = record.get("membershipStatus")
    if not isinstance(raw, str):
        return None
    return _STATUS_MAP.get(raw.strip().lower())


def to_tenant_user(record: dict[str, Any]) -> Optional[TenantUser]:
    account_id = record.get("accountId") or record.get("account_id")
    email = record.get("email")
    if not account_id or not isinstance(email, str) or not email.strip():
        return None
    account_type = record.get("accountType")
    if account_type and str(account_type).lower() != "atlassian":
        return None
    status = _resolve_status(record)
    if status is None:
        logger.warning(
            "atlassian_user_unknown_status",
            account_id=str(account_id),
            membership_status=record.get("membershipStatus"),
        )
        return None
    return TenantUser(
        account_id=str(account_id),
        email=email.strip(),
        status=status,
        added_to_org=parse_timestamp(record.get("addedToOrg")),
        name=record.get("name"),
    )


def to_activity_record(account_id: str, payload: dict[str, Any]) -> ActivityRecord:
    data = payload.get("data")
    if not isinstance(data, dict):
        return ActivityRecord(account_id=account_id)
    product_access = data.get("product_access") or []
    products = []
    for entry in product_access:
        if not isinstance(entry, dict):
            continue
        timestamp = entry.get("last_active_timestamp") or entry.get("last_active")
        products.append(
            ProductActivity(
                product_key=str(entry.get("key") or "unknown"),
                last_active=timestamp if isinstance(timestamp, str) else None,
            )
        )
    return ActivityRecord(account_id=account_id, products=products)


class AtlassianAdminClient:
    def __init__(
        self,
        org_id: str,
        admin_email: str,
        api_key: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = _ATLASSIAN_API_URL,
        retry_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_pages: int = MAX_LISTING_PAGES,
    ):
        self.org_id = org_id
        credentials = f"{admin_email}:{api_key}".encode()
        self._auth_header = f"Basic {base64.b64encode(credentials).decode()}"
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._retry_sleep = retry_sleep
        self._max_pages = max_pages
        self._directory_id: Optional[str] = None

    @property
    def _http(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self._auth_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _send(
        self,
        method: str,
        url: str,
        *,
        description: str,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue one request and map failures onto the retry taxonomy."""
        try:
            response = await self._http.request(method, url, headers=self._headers, json=json)
        except (httpx.TimeoutException, httpx.ReadError, httpx.WriteError) as exc:
            raise RetryableAPIError(f"{description} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ExternalAPIError(f"{description} failed: {exc}") from exc

        if response.is_success:
            return response
        message = f"{description} failed with status {response.status_code}: {response.text}"
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableAPIError(message, upstream_status=response.status_code)
        raise ExternalAPIError(message, upstream_status=response.status_code)

    async def resolve_directory_id(self) -> str:
        """Look up the org's directory id once; later calls reuse it."""
        if self._directory_id is not None:
            return self._directory_id

        url = f"{self._base_url}/admin/v2/orgs/{self.org_id}/directories"
        try:
            response = await self._send("GET", url, description="Atlassian directory lookup")
            payload = response.json()
        except (ExternalAPIError, ValueError) as exc:
            raise DirectoryResolutionError(
                f"Could not resolve directory for org {self.org_id}: {exc}"
            ) from exc

        directories = payload.get("data") if isinstance(payload, dict) else None
        if not directories or not isinstance(directories[0], dict):
            raise DirectoryResolutionError(f"No directory found for org {self.org_id}")
        directory_id = directories[0].get("directoryId") or directories[0].get("id")
        if not directory_id:
            raise DirectoryResolutionError(f"Directory entry for org {self.org_id} has no id")

        self._directory_id = str(directory_id)
        logger.info("atlassian_directory_resolved", org_id=self.org_id, directory_id=self._directory_id)
        return self._directory_id

    def _users_url(self, directory_id: str, cursor: Optional[str] = None) -> str:
        params: dict[str, Any] = {"limit": _LISTING_PAGE_SIZE}
        if cursor:
            params["cursor"] = cursor
        base = f"{self._base_url}/admin/v2/orgs/{self.org_id}/directories/{directory_id}/users"
        return str(httpx.URL(base, params=params))

    def _next_url(self, directory_id: str, next_link: Any) -> Optional[str]:
        if not isinstance(next_link, str) or not next_link:
            return None
        if next_link.startswith(("https://", "http://")):
            return next_link
        return self._users_url(directory_id, cursor=next_link)

    async def list_tenant_users(self) -> list[TenantUser]:
        """
        Fetch every user in the org directory.

        Returns partial results, with a warning, when rate limited (429), when
        the page ceiling is reached, or when the cursor loops back on itself.
        """
        directory_id = await self.resolve_directory_id()
        users: list[TenantUser] = []
        seen_urls: set[str] = set()
        url: Optional[str] = self._users_url(directory_id)
        pages = 0

        while url:
            if url in seen_urls:
                logger.warning("atlassian_pagination_cycle_detected", url=url, users_collected=len(users))
                break
            if pages >= self._max_pages:
                logger.warning(
                    "atlassian_pagination_page_limit_reached",
                    max_pages=self._max_pages,
                    users_collected=len(users),
                )
                break
            seen_urls.add(url)
            pages += 1

            try:
                response = await self._send("GET", url, description="Atlassian user listing")
            except RetryableAPIError as exc:
                if exc.upstream_status != 429:
                    raise
                logger.warning(
                    "atlassian_user_listing_rate_limited",
                    page=pages,
                    users_collected=len(users),
                )
                break

            payload = response.json()
            for record in payload.get("data") or []:
                if not isinstance(record, dict):
                    continue
                user = to_tenant_user(record)
                if user is not None:
                    users.append(user)

            links = payload.get("links")
            next_link = links.get("next") if isinstance(links, dict) else None
            url = self._next_url(directory_id, next_link)

        logger.info("atlassian_users_fetched", count=len(users), pages=pages)
        return users

    async def get_last_active(self, account_id: str) -> ActivityRecord:
        url = (
            f"{self._base_url}/admin/v1/orgs/{self.org_id}"
            f"/directory/users/{account_id}/last-active-dates"
        )

        async def _fetch() -> ActivityRecord:
            response = await self._send(
                "GET", url, description=f"Last-active lookup for {account_id}"
            )
            payload = response.json()
            return to_activity_record(account_id, payload if isinstance(payload, dict) else {})

        return await call_with_retry("atlassian_get_last_active", _fetch, sleep=self._retry_sleep)

    async def suspend(self, account_id: str) -> None:
        url = (
            f"{self._base_url}/admin/v1/orgs/{self.org_id}"
            f"/directory/users/{account_id}/suspend-access"
        )

        async def _suspend() -> None:
            await self._send(
                "POST",
                url,
                description=f"Suspend of {account_id}",
                json={"message": SUSPEND_MESSAGE},
            )

        await call_with_retry("atlassian_suspend", _suspend, sleep=self._retry_sleep)
        logger.info("atlassian_user_suspended", account_id=account_id)

    async def delete(self, account_id: str) -> None:
        """
        Initiate permanent deletion.

        Atlassian keeps the account deactivated for a 14-day grace period before
        the deletion completes; success here means "deletion initiated".
        """
        url = f"{self._base_url}/users/{account_id}/manage/lifecycle/delete"

        async def _delete() -> None:
            await self._send("POST", url, description=f"Delete of {account_id}")

        await call_with_retry("atlassian_delete", _delete, sleep=self._retry_sleep)
        logger.info("atlassian_user_deletion_initiated", account_id=account_id)
