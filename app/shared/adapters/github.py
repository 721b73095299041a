from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from app.shared.core.exceptions import ExternalAPIError
from app.shared.core.http import get_http_client
from app.shared.core.identity import normalize_username

logger = structlog.get_logger()

_GITHUB_API_URL = "https://api.github.com"
_PAGE_SIZE = 100


def _extract_login_set(rows: list[Any]) -> set[str]:
    logins: set[str] = set()
    for row in rows:
        if not isinstance(row, dict):
            continue
        login = normalize_username(row.get("login"))
        if login:
            logins.add(login)
    return logins


class GitHubOrgClient:
    """
    GitHub organization membership client.

    Every call is attempted once; the membership reconciler records
    failures per user instead of retrying them.
    """

    def __init__(
        self,
        token: str,
        org: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = _GITHUB_API_URL,
    ):
        self.org = org
        self._token = token
        self._client = client
        self._base_url = base_url.rstrip("/")

    @property
    def _http(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github+json",
        }

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ExternalAPIError(f"GitHub request {method} {url} failed: {exc}") from exc
        return response

    async def _paginate(self, path: str) -> list[Any]:
        rows: list[Any] = []
        url: Optional[str] = f"{self._base_url}{path}"
        params: Optional[dict[str, Any]] = {"per_page": _PAGE_SIZE}
        while url:
            response = await self._request("GET", url, params=params)
            if response.status_code != 200:
                raise ExternalAPIError(
                    f"GitHub listing {path} failed with status {response.status_code}: {response.text}",
                    upstream_status=response.status_code,
                )
            payload = response.json()
            if isinstance(payload, list):
                rows.extend(payload)
            # The next link already carries per_page and page.
            url = response.links.get("next", {}).get("url")
            params = None
        return rows

    async def list_members(self) -> set[str]:
        try:
            rows = await self._paginate(f"/orgs/{self.org}/members")
        except ExternalAPIError as exc:
            logger.error("github_list_members_failed", org=self.org, error=str(exc))
            raise
        return _extract_login_set(rows)

    async def list_pending_invitations(self) -> set[str]:
        """Lowercase logins with a pending invitation; email-only invitations are ignored."""
        try:
            rows = await self._paginate(f"/orgs/{self.org}/invitations")
        except ExternalAPIError as exc:
            logger.error("github_list_invitations_failed", org=self.org, error=str(exc))
            raise
        return _extract_login_set(rows)

    async def get_user_id(self, username: str) -> Optional[int]:
        response = await self._request("GET", f"{self._base_url}/users/{username}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ExternalAPIError(
                f"GitHub user lookup for {username} failed with status {response.status_code}",
                upstream_status=response.status_code,
            )
        user_id = response.json().get("id")
        return user_id if isinstance(user_id, int) else None

    async def invite(self, user_id: int) -> None:
        response = await self._request(
            "POST",
            f"{self._base_url}/orgs/{self.org}/invitations",
            json={"invitee_id": user_id},
        )
        if response.status_code != 201:
            raise ExternalAPIError(
                f"GitHub invitation for user id {user_id} failed with status {response.status_code}: {response.text}",
                upstream_status=response.status_code,
            )
        logger.info("github_invitation_created", org=self.org, user_id=user_id)

    async def remove_member(self, username: str) -> None:
        response = await self._request(
            "DELETE", f"{self._base_url}/orgs/{self.org}/members/{username}"
        )
        if response.status_code != 204:
            raise ExternalAPIError(
                f"GitHub removal of {username} failed with status {response.status_code}: {response.text}",
                upstream_status=response.status_code,
            )
        logger.info("github_member_removed", org=self.org, username=username)
