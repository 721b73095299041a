from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import google.auth.exceptions
import google.auth.transport.requests
import httpx
import structlog
from google.oauth2 import service_account

from app.modules.identity_sync.domain.types import DirectoryUser
from app.shared.core.exceptions import ConfigurationError, ExternalAPIError
from app.shared.core.http import get_http_client
from app.shared.core.identity import parse_timestamp

logger = structlog.get_logger()

_DIRECTORY_USERS_URL = "https://admin.googleapis.com/admin/directory/v1/users"
_DIRECTORY_SCOPES = ["https://www.googleapis.com/auth/admin.directory.user.readonly"]
_PAGE_SIZE = 300
_CUSTOM_SCHEMA = "3rd-party_tools"
_GITHUB_USERNAME_FIELD = "GitHub_Username"


def _extract_github_username(user: dict[str, Any]) -> Optional[str]:
    custom_schemas = user.get("customSchemas")
    if not isinstance(custom_schemas, dict):
        return None
    tools = custom_schemas.get(_CUSTOM_SCHEMA)
    if not isinstance(tools, dict):
        return None
    username = tools.get(_GITHUB_USERNAME_FIELD)
    if not isinstance(username, str) or not username.strip():
        return None
    return username.strip()


def to_directory_user(user: dict[str, Any]) -> Optional[DirectoryUser]:
    primary_email = user.get("primaryEmail")
    if not isinstance(primary_email, str) or not primary_email.strip():
        return None
    return DirectoryUser(
        primary_email=primary_email.strip(),
        github_username=_extract_github_username(user),
        created_at=parse_timestamp(user.get("creationTime")),
    )


def load_service_account_credentials(
    credentials_json: str, admin_email: str
) -> service_account.Credentials:
    try:
        info = json.loads(credentials_json)
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=_DIRECTORY_SCOPES
        )
    except ValueError as exc:
        raise ConfigurationError(
            "GOOGLE_APPLICATION_CREDENTIALS must contain service account JSON"
        ) from exc
    # Domain-wide delegation: act as the workspace admin.
    return credentials.with_subject(admin_email)


class GoogleDirectoryClient:
    """Reads the authoritative user list from the Google Workspace Admin SDK."""

    def __init__(
        self,
        credentials: Any,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self._client = client

    @property
    def _http(self) -> httpx.AsyncClient:
        return self._client or get_http_client()

    async def _access_token(self) -> str:
        if not self._credentials.valid:
            request = google.auth.transport.requests.Request()
            # google-auth refresh is blocking.
            await asyncio.to_thread(self._credentials.refresh, request)
        return str(self._credentials.token)

    async def list_users(self) -> list[DirectoryUser]:
        users: list[DirectoryUser] = []
        page_token: Optional[str] = None
        try:
            token = await self._access_token()
            while True:
                params: dict[str, Any] = {
                    "customer": "my_customer",
                    "projection": "full",
                    "viewType": "admin_view",
                    "maxResults": _PAGE_SIZE,
                }
                if page_token:
                    params["pageToken"] = page_token
                response = await self._http.get(
                    _DIRECTORY_USERS_URL,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
                if response.status_code != 200:
                    raise ExternalAPIError(
                        f"Google directory listing failed with status {response.status_code}: {response.text}",
                        upstream_status=response.status_code,
                    )
                payload = response.json()
                for raw_user in payload.get("users") or []:
                    if not isinstance(raw_user, dict):
                        continue
                    user = to_directory_user(raw_user)
                    if user is not None:
                        users.append(user)
                page_token = payload.get("nextPageToken")
                if not page_token:
                    break
        except (httpx.HTTPError, google.auth.exceptions.GoogleAuthError) as exc:
            logger.error("google_directory_list_users_failed", error=str(exc))
            raise ExternalAPIError(f"Google directory listing failed: {exc}") from exc
        except ExternalAPIError as exc:
            logger.error("google_directory_list_users_failed", error=str(exc))
            raise

        logger.info("google_directory_users_fetched", count=len(users))
        return users
