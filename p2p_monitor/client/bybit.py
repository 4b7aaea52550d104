"""Bybit P2P (OTC) API 客户端"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from p2p_monitor.client.models import OfferPage, OfferQuery, Side
from p2p_monitor.errors import (
    UpstreamMalformedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

ONLINE_ITEMS_ENDPOINT = "/fiat/otc/item/online"


@dataclass
class BybitP2PClient:
    """Bybit P2P API 客户端，不做重试"""

    base_url: str = "https://api2.bybit.com"
    timeout_seconds: float = 15
    user_agent: str = "Mozilla/5.0"
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def __aenter__(self) -> "BybitP2PClient":
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            headers={"Content-Type": "application/json", "User-Agent": self.user_agent},
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> Any:
        """发送 POST 请求并解析 JSON"""
        if self._session is None:
            raise RuntimeError("Session not initialized. Use 'async with' context.")

        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._session.post(url, json=payload)
            if response.status != 200:
                error_text = await response.text()
                raise UpstreamUnavailableError(
                    f"HTTP {response.status}: {error_text[:200]}", status=response.status
                )
            text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailableError(f"Request to {url} failed: {e}") from e

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise UpstreamMalformedError(f"Response is not valid JSON: {e}") from e

    async def fetch_offers(self, query: OfferQuery) -> OfferPage:
        """获取一页在线挂单"""
        if query.side not in (Side.SELL, Side.BUY):
            raise ValueError(f"Invalid side: {query.side}")

        data = await self._post(ONLINE_ITEMS_ENDPOINT, query.to_payload())
        if not isinstance(data, dict) or "ret_code" not in data:
            raise UpstreamMalformedError("Response is missing ret_code")

        if data["ret_code"] != 0:
            raise UpstreamRejectedError(data["ret_code"], str(data.get("ret_msg", "")))

        result = data.get("result")
        if not isinstance(result, dict) or not isinstance(result.get("items"), list):
            raise UpstreamMalformedError("Response is missing result.items")

        items = result["items"]
        if not all(isinstance(item, dict) for item in items):
            raise UpstreamMalformedError("result.items contains non-object entries")

        try:
            count = int(result.get("count", len(items)))
        except (TypeError, ValueError) as e:
            raise UpstreamMalformedError(f"Invalid result.count: {result.get('count')}") from e

        logger.debug(
            f"Fetched {len(items)}/{count} offers for {query.token_id}/{query.currency_id} "
            f"side={query.side} page={query.page}"
        )
        return OfferPage(count=count, items=items, time_now=data.get("time_now"))
