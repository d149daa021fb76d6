import asyncio
import os
from time import monotonic
from typing import Any

import httpx

from household_ledger.core.settings import DEFAULT_BASIQ_API_URL
from household_ledger.errors import BasiqError
from household_ledger.logger import get_logger

logger = get_logger(__name__)

API_VERSION = "3.0"
TOKEN_EXPIRY_MARGIN_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 30.0
JOB_FINISHED_STATUSES = {"success", "failed"}


class BasiqClient:
    """
    Async client for the Basiq aggregator.

    The server token is cached with an explicit expiry and refreshed a
    minute early; callers only ever see accounts and transactions.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.base_url = (base_url or os.getenv("BASIQ_API_URL") or DEFAULT_BASIQ_API_URL).rstrip("/")
        self.api_key = api_key or os.getenv("BASIQ_API_KEY")
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()
        self._token_lock = asyncio.Lock()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    def _get_cached_token(self) -> str | None:
        if self._token is None:
            return None
        if monotonic() >= self._token_expires_at - TOKEN_EXPIRY_MARGIN_SECONDS:
            return None
        return self._token

    async def get_token(self) -> str:
        if not self.api_key:
            raise BasiqError("Basiq API key is not configured.")

        cached = self._get_cached_token()
        if cached is not None:
            return cached

        async with self._token_lock:
            cached = self._get_cached_token()
            if cached is not None:
                return cached

            client = await self._get_client()
            try:
                response = await client.post(
                    f"{self.base_url}/token",
                    headers={
                        "Authorization": f"Basic {self.api_key}",
                        "basiq-version": API_VERSION,
                    },
                    data={"scope": "SERVER_ACCESS"},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise BasiqError(f"Basiq auth failed: {exc}") from exc

            data = response.json()
            self._token = data["access_token"]
            self._token_expires_at = monotonic() + float(data.get("expires_in", 0))
            logger.debug(f"[SYNC] Obtained Basiq token (expires in {data.get('expires_in')}s).")
            return self._token

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        token = await self.get_token()
        client = await self._get_client()
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        try:
            response = await client.request(
                method,
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                    "basiq-version": API_VERSION,
                },
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise BasiqError(f"Basiq API error on {path}: {exc}") from exc
        return response.json()

    async def refresh_connection(self, user_id: str, connection_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/users/{user_id}/connections/{connection_id}/refresh")

    async def get_job(self, job_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/jobs/{job_id}")

    async def wait_for_job(self, job_id: str, max_attempts: int = 30, interval: float = 2.0) -> dict[str, Any]:
        for _ in range(max_attempts):
            job = await self.get_job(job_id)
            steps = job.get("steps") or []
            if all(step.get("status") in JOB_FINISHED_STATUSES for step in steps):
                return job
            await asyncio.sleep(interval)
        raise BasiqError(f"Job {job_id} did not complete after {max_attempts} attempts.")

    async def get_accounts(self, user_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/users/{user_id}/accounts")
        return data.get("data") or []

    async def get_transactions(self, user_id: str, from_date: str | None = None) -> list[dict[str, Any]]:
        """Fetch every page, following ``links.next`` until it runs out."""
        params: dict[str, str] = {}
        if from_date:
            params["filter[transaction.postDate][gte]"] = from_date

        transactions: list[dict[str, Any]] = []
        next_url: str | None = f"/users/{user_id}/transactions"
        while next_url:
            page = await self._request("GET", next_url, params=params or None)
            transactions.extend(page.get("data") or [])
            next_url = (page.get("links") or {}).get("next")
            # The next link already carries the filter
            params = {}
        logger.info(f"[SYNC] Fetched {len(transactions)} transactions for user {user_id}.")
        return transactions
