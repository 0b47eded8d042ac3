"""Linear Client — retry, backoff and error mapping against a mocked GraphQL endpoint.

Tests cover:
    - Successful calls return the data object and send the API key
    - 429 and 5xx retried with backoff; Retry-After honoured
    - 401/4xx and timeouts fail immediately
    - GraphQL errors: team-not-found, authentication, generic
    - API key resolved lazily from the key loader

Design Decisions:
    - httpx.MockTransport drives the real client; asyncio.sleep is replaced so
      backoff does not slow the suite
"""

import httpx
import pytest

from portal.core.errors import LinearAPIError, LinearNotConfiguredError, ResourceNotFoundError
from portal.infrastructure import linear_queries
from portal.infrastructure.linear_client import LinearClient, query_name

TEAM_UUID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(seconds):
        recorded.append(seconds)

    monkeypatch.setattr("portal.infrastructure.linear_client.asyncio.sleep", fake_sleep)
    return recorded


def _client(responses, *, api_key="lin_api_key", key_loader=None, seen=None):
    """LinearClient whose transport replays responses in order."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    return LinearClient(
        api_key,
        key_loader=key_loader,
        base_delay_ms=10,
        max_retries=2,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _ok(data):
    return httpx.Response(200, json={"data": data})


def _errors(message, code=None):
    error = {"message": message}
    if code:
        error["extensions"] = {"code": code}
    return httpx.Response(200, json={"data": None, "errors": [error]})


def test_query_name():
    assert query_name(linear_queries.GET_TEAM) == "GetTeam"
    assert query_name(linear_queries.CREATE_ISSUE) == "CreateIssue"
    assert query_name("{ viewer { id } }") == "UnknownQuery"


async def test_success_returns_data_and_sends_key():
    seen = []
    client = _client([_ok({"viewer": {"id": "v1"}})], seen=seen)
    data = await client.execute(linear_queries.TEST_CONNECTION)
    assert data == {"viewer": {"id": "v1"}}
    assert seen[0].headers["Authorization"] == "lin_api_key"
    assert seen[0].headers["User-Agent"].startswith("Client-Portal-API")


async def test_key_loaded_lazily():
    calls = []

    async def loader():
        calls.append(1)
        return "from-kv"

    seen = []
    client = _client([_ok({}), _ok({})], api_key=None, key_loader=loader, seen=seen)
    await client.execute(linear_queries.TEST_CONNECTION)
    await client.execute(linear_queries.TEST_CONNECTION)
    assert seen[0].headers["Authorization"] == "from-kv"
    assert len(calls) == 1


async def test_missing_key_raises_not_configured():
    async def loader():
        return None

    client = _client([], api_key=None, key_loader=loader)
    with pytest.raises(LinearNotConfiguredError):
        await client.execute(linear_queries.TEST_CONNECTION)


async def test_rate_limit_retried_with_retry_after(sleeps):
    client = _client([
        httpx.Response(429, headers={"retry-after": "2"}),
        _ok({"team": {"id": "t1"}}),
    ])
    data = await client.execute(linear_queries.GET_TEAM, {"teamId": "t1"})
    assert data == {"team": {"id": "t1"}}
    assert sleeps == [2.0]


async def test_rate_limit_exhausted(sleeps):
    client = _client([httpx.Response(429)] * 3)
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.GET_TEAM, {"teamId": "t1"})
    assert exc.value.api_error_type == "rate_limit"
    assert len(sleeps) == 2


async def test_server_error_retried(sleeps):
    client = _client([httpx.Response(502), _ok({"ok": True})])
    assert await client.execute(linear_queries.TEST_CONNECTION) == {"ok": True}
    assert len(sleeps) == 1
    assert 0.007 <= sleeps[0] <= 0.0125


async def test_connection_errors_exhaust_retries(sleeps):
    request = httpx.Request("POST", "https://api.linear.app/graphql")
    client = _client([httpx.ConnectError("refused", request=request)] * 3)
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "connection_error"


async def test_unauthorized_not_retried(sleeps):
    client = _client([httpx.Response(401, text="token revoked")])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "authentication"
    assert "401 Unauthorized - token revoked" in exc.value.message
    assert sleeps == []


async def test_server_error_exhausted_reports_status_and_body(sleeps):
    client = _client([httpx.Response(503, text="upstream maintenance")] * 3)
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "connection_error"
    assert "503 Service Unavailable - upstream maintenance" in exc.value.message
    assert len(sleeps) == 2


async def test_client_error_not_retried(sleeps):
    client = _client([httpx.Response(400, text="bad query")])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "client_error"
    assert "bad query" in exc.value.message


async def test_timeout_not_retried(sleeps):
    request = httpx.Request("POST", "https://api.linear.app/graphql")
    client = _client([httpx.ReadTimeout("slow", request=request)])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "timeout"
    assert sleeps == []


async def test_team_not_found_raises_404():
    client = _client([_errors("Entity not found: Team")])
    with pytest.raises(ResourceNotFoundError) as exc:
        await client.execute(linear_queries.GET_TEAM, {"teamId": TEAM_UUID})
    assert exc.value.http_status == 404
    assert exc.value.message == f"UUID team not found in Linear workspace: {TEAM_UUID}"


async def test_team_not_found_allowed_returns_none():
    client = _client([_errors("Entity not found: Team")])
    result = await client.execute(
        linear_queries.GET_TEAM, {"teamId": "ENG"}, allow_team_not_found=True,
    )
    assert result is None


async def test_graphql_auth_error():
    client = _client([_errors("Request failed: authentication required")])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "authentication"


async def test_graphql_generic_error_includes_code():
    client = _client([_errors("Something broke", code="INTERNAL")])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.message == "Linear GraphQL Error in TestConnection: Something broke (INTERNAL)"


async def test_missing_data_is_error():
    client = _client([httpx.Response(200, json={})])
    with pytest.raises(LinearAPIError) as exc:
        await client.execute(linear_queries.TEST_CONNECTION)
    assert exc.value.api_error_type == "empty_response"
