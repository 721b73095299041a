import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from app.modules.identity_sync.domain.types import TenantAccountStatus
from app.shared.adapters.atlassian import (
    SUSPEND_MESSAGE,
    AtlassianAdminClient,
    to_activity_record,
    to_tenant_user,
)
from app.shared.core.exceptions import (
    DirectoryResolutionError,
    ExternalAPIError,
    RetryableAPIError,
)

BASE = "https://api.atlassian.com"
DIRECTORIES_URL = f"{BASE}/admin/v2/orgs/org-1/directories"
USERS_PATH = "/admin/v2/orgs/org-1/directories/dir-1/users"
FIRST_PAGE_URL = f"{BASE}{USERS_PATH}?limit=100"


def _user(account_id: str, email: str, status: str = "active", **extra) -> dict:
    record = {
        "accountId": account_id,
        "email": email,
        "accountType": "atlassian",
        "membershipStatus": status,
    }
    record.update(extra)
    return record


def _page(users: list[dict], next_link=None) -> httpx.Response:
    payload: dict = {"data": users}
    if next_link is not None:
        payload["links"] = {"next": next_link}
    return httpx.Response(200, json=payload)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def atlassian_client(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return AtlassianAdminClient(
        "org-1",
        "admin@example.com",
        "api-key",
        client=httpx.AsyncClient(),
        retry_sleep=_sleep,
    )


def _mock_directory():
    return respx.get(DIRECTORIES_URL).mock(
        return_value=httpx.Response(200, json={"data": [{"directoryId": "dir-1"}]})
    )


class TestRecordMapping:
    def test_membership_status_mapping(self):
        assert to_tenant_user(_user("a", "a@example.com")).status == TenantAccountStatus.ACTIVE
        assert to_tenant_user(_user("b", "b@example.com", "suspended")).status == TenantAccountStatus.INACTIVE
        assert to_tenant_user(_user("c", "c@example.com", "deactivated")).status == TenantAccountStatus.INACTIVE
        assert to_tenant_user(_user("d", "d@example.com", "closed")).status == TenantAccountStatus.CLOSED

    def test_membership_status_preferred_over_account_status(self):
        record = _user("a", "a@example.com", "suspended", accountStatus="active")
        assert to_tenant_user(record).status == TenantAccountStatus.INACTIVE

    def test_missing_membership_status_skipped(self):
        record = {
            "accountId": "a1",
            "email": "x@example.com",
            "accountType": "atlassian",
            "accountStatus": "active",
        }
        assert to_tenant_user(record) is None

    def test_records_without_email_or_unknown_status_skipped(self):
        assert to_tenant_user({"accountId": "a", "membershipStatus": "active"}) is None
        assert to_tenant_user(_user("a", "a@example.com", "pending")) is None
        assert to_tenant_user(_user("a", "bot@example.com", accountType="app")) is None

    def test_added_to_org_parsed(self):
        user = to_tenant_user(_user("a", "a@example.com", addedToOrg="2024-05-30T00:00:00Z"))
        assert user.added_to_org.isoformat() == "2024-05-30T00:00:00+00:00"

    def test_activity_record_mapping(self):
        record = to_activity_record(
            "acc-1",
            {
                "data": {
                    "product_access": [
                        {"key": "jira-software", "last_active_timestamp": "2024-01-01T00:00:00Z"},
                        {"key": "confluence", "last_active": "2024-02-01T00:00:00Z"},
                        {"key": "bitbucket"},
                    ]
                }
            },
        )
        assert [p.product_key for p in record.products] == ["jira-software", "confluence", "bitbucket"]
        assert record.products[1].last_active == "2024-02-01T00:00:00Z"
        assert record.products[2].last_active is None

    def test_activity_record_without_data(self):
        assert to_activity_record("acc-1", {}).products == []


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_follows_cursor(atlassian_client):
    _mock_directory()
    users_route = respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(
        side_effect=[
            _page([_user("a", "a@example.com")], next_link="cursor-2"),
            _page([_user("b", "b@example.com", "suspended")]),
        ]
    )

    users = await atlassian_client.list_tenant_users()

    assert [u.account_id for u in users] == ["a", "b"]
    assert users_route.call_count == 2
    second = urlparse(str(users_route.calls[1].request.url))
    assert parse_qs(second.query) == {"limit": ["100"], "cursor": ["cursor-2"]}


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_accepts_full_next_url(atlassian_client):
    _mock_directory()
    users_route = respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(
        side_effect=[
            _page([_user("a", "a@example.com")], next_link=f"{FIRST_PAGE_URL}&cursor=abc"),
            _page([_user("b", "b@example.com")]),
        ]
    )

    users = await atlassian_client.list_tenant_users()

    assert len(users) == 2
    assert "cursor=abc" in str(users_route.calls[1].request.url)


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_rate_limited_returns_partial(atlassian_client, sleeps):
    _mock_directory()
    users_route = respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(
        side_effect=[
            _page([_user("a", "a@example.com")], next_link="cursor-2"),
            httpx.Response(429, json={"message": "rate limited"}),
        ]
    )

    users = await atlassian_client.list_tenant_users()

    assert [u.account_id for u in users] == ["a"]
    assert users_route.call_count == 2
    assert sleeps == []


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_stops_on_cursor_cycle(atlassian_client):
    _mock_directory()
    users_route = respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(
        return_value=_page([_user("a", "a@example.com")], next_link=FIRST_PAGE_URL)
    )

    users = await atlassian_client.list_tenant_users()

    assert len(users) == 1
    assert users_route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_stops_at_page_limit():
    client = AtlassianAdminClient(
        "org-1", "admin@example.com", "api-key", client=httpx.AsyncClient(), max_pages=3
    )
    _mock_directory()
    counter = {"page": 0}

    def _endless(request):
        counter["page"] += 1
        n = counter["page"]
        return _page([_user(f"acc-{n}", f"user{n}@example.com")], next_link=f"cursor-{n + 1}")

    users_route = respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(side_effect=_endless)

    users = await client.list_tenant_users()

    assert users_route.call_count == 3
    assert len(users) == 3


@pytest.mark.asyncio
@respx.mock
async def test_list_tenant_users_server_error_raises(atlassian_client):
    _mock_directory()
    respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(return_value=httpx.Response(500))

    with pytest.raises(ExternalAPIError) as exc_info:
        await atlassian_client.list_tenant_users()
    assert not isinstance(exc_info.value, RetryableAPIError)


@pytest.mark.asyncio
@respx.mock
async def test_directory_id_resolved_once(atlassian_client):
    directory_route = _mock_directory()
    respx.get(url__startswith=f"{BASE}{USERS_PATH}").mock(return_value=_page([]))

    await atlassian_client.list_tenant_users()
    await atlassian_client.list_tenant_users()

    assert directory_route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_directory_resolution_failure(atlassian_client):
    respx.get(DIRECTORIES_URL).mock(return_value=httpx.Response(403, json={"message": "forbidden"}))

    with pytest.raises(DirectoryResolutionError):
        await atlassian_client.list_tenant_users()


@pytest.mark.asyncio
@respx.mock
async def test_directory_resolution_empty(atlassian_client):
    respx.get(DIRECTORIES_URL).mock(return_value=httpx.Response(200, json={"data": []}))

    with pytest.raises(DirectoryResolutionError):
        await atlassian_client.resolve_directory_id()


@pytest.mark.asyncio
@respx.mock
async def test_suspend_retries_rate_limit(atlassian_client, sleeps):
    route = respx.post(
        f"{BASE}/admin/v1/orgs/org-1/directory/users/acc-1/suspend-access"
    ).mock(side_effect=[httpx.Response(429), httpx.Response(204)])

    await atlassian_client.suspend("acc-1")

    assert route.call_count == 2
    assert sleeps == [1]
    request = route.calls[0].request
    assert json.loads(request.content) == {"message": SUSPEND_MESSAGE}
    assert request.headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
@respx.mock
async def test_delete_not_found_fails_fast(atlassian_client, sleeps):
    route = respx.post(f"{BASE}/users/acc-1/manage/lifecycle/delete").mock(
        return_value=httpx.Response(404)
    )

    with pytest.raises(ExternalAPIError):
        await atlassian_client.delete("acc-1")

    assert route.call_count == 1
    assert sleeps == []


@pytest.mark.asyncio
@respx.mock
async def test_get_last_active_retries_timeout(atlassian_client, sleeps):
    url = f"{BASE}/admin/v1/orgs/org-1/directory/users/acc-1/last-active-dates"
    route = respx.get(url).mock(
        side_effect=[
            httpx.ReadTimeout("timed out"),
            httpx.Response(
                200,
                json={"data": {"product_access": [{"key": "jira", "last_active_timestamp": "2024-01-01"}]}},
            ),
        ]
    )

    record = await atlassian_client.get_last_active("acc-1")

    assert route.call_count == 2
    assert sleeps == [1]
    assert record.account_id == "acc-1"
    assert record.products[0].last_active == "2024-01-01"


@pytest.mark.asyncio
@respx.mock
async def test_refused_connection_fails_fast(atlassian_client, sleeps):
    route = respx.post(
        f"{BASE}/admin/v1/orgs/org-1/directory/users/acc-1/suspend-access"
    ).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(ExternalAPIError) as exc_info:
        await atlassian_client.suspend("acc-1")

    assert not isinstance(exc_info.value, RetryableAPIError)
    assert route.call_count == 1
    assert sleeps == []
