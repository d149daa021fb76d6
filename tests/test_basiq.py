from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from household_ledger.errors import BasiqError
from household_ledger.integration.basiq import BasiqClient


def _response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    return response


def _client(token_expires_in: int = 3600) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.is_closed = False
    mock_client.post = AsyncMock(return_value=_response({"access_token": "tok", "expires_in": token_expires_in}))
    return mock_client


@pytest.mark.anyio
async def test_token_is_cached_between_requests() -> None:
    mock_client = _client()
    mock_client.request = AsyncMock(return_value=_response({"data": [{"id": "acc-1"}]}))
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    first = await basiq.get_accounts("u1")
    await basiq.get_accounts("u1")

    assert first == [{"id": "acc-1"}]
    assert mock_client.post.call_count == 1
    assert mock_client.request.call_count == 2
    method, url = mock_client.request.call_args.args
    assert (method, url) == ("GET", "https://basiq.test/users/u1/accounts")
    assert mock_client.request.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"
    token_call = mock_client.post.call_args
    assert token_call.args[0] == "https://basiq.test/token"
    assert token_call.kwargs["headers"]["Authorization"] == "Basic key"
    assert token_call.kwargs["data"] == {"scope": "SERVER_ACCESS"}


@pytest.mark.anyio
async def test_token_inside_expiry_margin_is_refreshed() -> None:
    # 30s left is inside the 60s margin, so the cached token is never reused
    mock_client = _client(token_expires_in=30)
    mock_client.request = AsyncMock(return_value=_response({"data": []}))
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    await basiq.get_accounts("u1")
    await basiq.get_accounts("u1")

    assert mock_client.post.call_count == 2


@pytest.mark.anyio
async def test_transactions_follow_next_links() -> None:
    mock_client = _client()
    next_link = "https://basiq.test/users/u1/transactions?next=abc"
    mock_client.request = AsyncMock(side_effect=[
        _response({"data": [{"id": "t1"}, {"id": "t2"}], "links": {"next": next_link}}),
        _response({"data": [{"id": "t3"}], "links": {}}),
    ])
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    transactions = await basiq.get_transactions("u1", from_date="2024-03-01")

    assert [tx["id"] for tx in transactions] == ["t1", "t2", "t3"]
    first, second = mock_client.request.call_args_list
    assert first.args[1] == "https://basiq.test/users/u1/transactions"
    assert first.kwargs["params"] == {"filter[transaction.postDate][gte]": "2024-03-01"}
    assert second.args[1] == next_link
    assert second.kwargs["params"] is None


@pytest.mark.anyio
async def test_missing_api_key_raises() -> None:
    with patch.dict("os.environ", {"BASIQ_API_KEY": ""}):
        basiq = BasiqClient(base_url="https://basiq.test", client=_client())

    assert basiq.configured is False
    with pytest.raises(BasiqError):
        await basiq.get_accounts("u1")


@pytest.mark.anyio
async def test_http_errors_become_basiq_errors() -> None:
    mock_client = _client()
    failing = _response({})
    failing.raise_for_status.side_effect = httpx.HTTPStatusError(
        "401 Unauthorized", request=MagicMock(), response=MagicMock()
    )
    mock_client.request = AsyncMock(return_value=failing)
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    with pytest.raises(BasiqError):
        await basiq.get_accounts("u1")


@pytest.mark.anyio
async def test_wait_for_job_polls_until_steps_finish() -> None:
    mock_client = _client()
    mock_client.request = AsyncMock(side_effect=[
        _response({"id": "job-1", "steps": [{"status": "in-progress"}]}),
        _response({"id": "job-1", "steps": [{"status": "success"}, {"status": "failed"}]}),
    ])
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    job = await basiq.wait_for_job("job-1", interval=0)

    assert job["steps"][0]["status"] == "success"
    assert mock_client.request.call_count == 2


@pytest.mark.anyio
async def test_wait_for_job_gives_up() -> None:
    mock_client = _client()
    mock_client.request = AsyncMock(return_value=_response({"id": "job-1", "steps": [{"status": "pending"}]}))
    basiq = BasiqClient(base_url="https://basiq.test", api_key="key", client=mock_client)

    with pytest.raises(BasiqError):
        await basiq.wait_for_job("job-1", max_attempts=2, interval=0)
