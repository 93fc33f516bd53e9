from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter
from tenacity.wait import wait_base

from walkthroughs.services.errors import BackendError

logger = logging.getLogger(__name__)


class WalkthroughBackendClient:
    """Async client for the walkthrough content backend.

    GET requests are retried on transport errors; POSTs are sent once.
    """

    def __init__(
        self,
        *,
        base_url: str,
        content_path: str = "/walkthroughs/",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._content_path = content_path if content_path.endswith("/") else f"{content_path}/"
        self._retry_wait = retry_wait or wait_exponential_jitter(initial=0.2, max=2.0)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "WalkthroughBackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_walkthrough(self, language: str, walkthrough_id: str | int) -> Any:
        return await self._get(f"{self._content_path}{language}/thread-{walkthrough_id}.json")

    async def get_custom_walkthroughs(self) -> Any:
        return await self._get("/customWalkthroughs")

    async def get_walkthrough_info(self, walkthrough_id: str | int) -> Any:
        return await self._get(f"/about/walkthrough/{walkthrough_id}")

    async def get_user_walkthroughs(self) -> Any:
        return await self._get("/user_walkthroughs")

    async def set_user_walkthroughs(self, data: Any = None, token: str | None = None) -> Any:
        """Save user-defined walkthrough repositories, then ask the backend to sync them."""
        headers = {"X-Forwarded-Access-Token": token} if token else {}
        response = await self._client.post("/user_walkthroughs", json={"data": data or {}}, headers=headers)
        _raise_for_status(response)
        logger.info("Saved user walkthroughs; requesting sync")
        try:
            sync = await self._client.post("/sync-walkthroughs")
            _raise_for_status(sync)
        except (httpx.HTTPError, BackendError) as exc:
            # best-effort once the save succeeded
            logger.warning("Walkthrough sync request failed: %s", exc)
        return _json_or_none(response)

    async def _get(self, url: str) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=self._retry_wait,
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(url)
        _raise_for_status(response)
        logger.debug("GET %s -> %s", url, response.status_code)
        return _json_or_none(response)


def _raise_for_status(response: httpx.Response) -> None:
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise BackendError(status=response.status_code, url=str(response.request.url), body=response.text) from exc


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    return response.json()
