# p2p_monitor/service.py
import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from p2p_monitor.aggregator.intervals import (
    IntervalBucket,
    aggregate_intervals,
    parse_bucket_width,
)
from p2p_monitor.aggregator.summary import MarketSummary, build_market_summary
from p2p_monitor.client.models import OfferQuery, Side
from p2p_monitor.collector.p2p_ingestor import IngestResult, P2PIngestor
from p2p_monitor.config import Config, TokenPair
from p2p_monitor.errors import (
    P2PMonitorError,
    StoreUnavailableError,
    UpstreamMalformedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from p2p_monitor.storage.database import Database
from p2p_monitor.storage.models import LatestOffer

if TYPE_CHECKING:
    from p2p_monitor.client.bybit import BybitP2PClient

logger = logging.getLogger(__name__)

HOUR_MS = 3600 * 1000

# 未显式传入时使用配置中的支付方式；显式传 None 表示不过滤
CONFIGURED: Any = object()

# 对外只暴露通用描述，具体错误写日志
PUBLIC_MESSAGES: dict[type[P2PMonitorError], str] = {
    UpstreamUnavailableError: "Upstream P2P service is unreachable, try again later",
    UpstreamRejectedError: "Upstream P2P service rejected the request",
    UpstreamMalformedError: "Upstream P2P service returned an unexpected response",
    StoreUnavailableError: "Storage is temporarily unavailable",
}


@dataclass
class Envelope:
    success: bool
    message: str
    data: Any = None


class P2PService:
    """ETL、聚合与清理的统一入口，依赖由调用方注入"""

    def __init__(self, config: Config, db: Database, client: "BybitP2PClient"):
        self.config = config
        self.db = db
        self.client = client
        self.ingestor = P2PIngestor(client, db, config.payment_methods)

    def _query(self, token_id: str, currency_id: str, side: Side, **overrides: Any) -> OfferQuery:
        return OfferQuery(
            token_id=token_id,
            currency_id=currency_id,
            side=side,
            payment_method_ids=list(self.config.ingestion.payment_method_ids),
            size=overrides.get("size") or self.config.upstream.page_size,
            page=overrides.get("page") or 1,
            sort_type=self.config.upstream.sort_type,
        )

    async def trigger_ingest(
        self,
        token_id: str,
        currency_id: str,
        size: int | None = None,
        page: int | None = None,
    ) -> list[IngestResult]:
        """先 SELL 后 BUY，两次请求之间固定停顿"""
        results = []
        for i, side in enumerate((Side.SELL, Side.BUY)):
            if i > 0:
                await asyncio.sleep(self.config.ingestion.request_pause_seconds)
            query = self._query(token_id, currency_id, side, size=size, page=page)
            results.append(await self.ingestor.ingest(query))
        return results

    async def monitor_pairs(self, pairs: list[TokenPair] | None = None) -> list[IngestResult]:
        """
        依次抓取所有交易对

        单个交易对的上游错误只记录日志；存储不可用时中止本轮。
        """
        if pairs is None:
            pairs = self.config.ingestion.pairs

        results: list[IngestResult] = []
        for i, pair in enumerate(pairs):
            if i > 0:
                await asyncio.sleep(self.config.ingestion.request_pause_seconds)
            try:
                results.extend(await self.trigger_ingest(pair.token_id, pair.currency_id))
            except (
                UpstreamUnavailableError,
                UpstreamRejectedError,
                UpstreamMalformedError,
            ) as e:
                logger.error(f"Error monitoring {pair.token_id}/{pair.currency_id}: {e}")
        return results

    async def get_aggregations(
        self,
        token_id: str,
        currency_id: str,
        side: int,
        bucket: str | None = None,
        window_hours: int | None = None,
        payment_method_id: int | None = CONFIGURED,
        end_ms: int | None = None,
    ) -> list[IntervalBucket]:
        if side not in (Side.SELL, Side.BUY):
            raise ValueError(f"Invalid side: {side}")
        width_ms = parse_bucket_width(bucket or self.config.aggregation.bucket)
        hours = window_hours or self.config.aggregation.window_hours
        if end_ms is None:
            end_ms = int(time.time() * 1000)
        start_ms = end_ms - hours * HOUR_MS
        method_id = (
            self.config.aggregation.payment_method_id
            if payment_method_id is CONFIGURED
            else payment_method_id
        )

        points = await self.db.get_price_points(
            token_id,
            currency_id,
            start_ms,
            end_ms,
            side=side,
            payment_method_id=method_id,
        )
        return aggregate_intervals(points, width_ms)

    async def get_summary(
        self, token_id: str, currency_id: str, now_ms: int | None = None
    ) -> MarketSummary:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        start_ms = now_ms - self.config.aggregation.summary_window_hours * HOUR_MS
        points = await self.db.get_price_points(
            token_id,
            currency_id,
            start_ms,
            now_ms,
            payment_method_id=self.config.aggregation.payment_method_id,
        )
        return build_market_summary(token_id, currency_id, points)

    async def get_latest_offers(self, limit: int | None = None) -> list[LatestOffer]:
        return await self.db.get_latest_offers(
            self.config.aggregation.payment_method_id,
            limit or self.config.aggregation.latest_offers_limit,
        )

    async def cleanup(self, retention_days: int | None = None) -> dict[str, int]:
        days = retention_days if retention_days is not None else self.config.database.retention_days
        if days < 1:
            raise ValueError(f"Retention must be at least 1 day, got {days}")
        deleted = await self.db.cleanup_old_data(days)
        logger.info(f"Cleanup ({days}d retention) removed {sum(deleted.values())} rows: {deleted}")
        return deleted

    async def respond(self, call: Awaitable[Any], success_message: str = "OK") -> Envelope:
        """把服务调用包装成 success/failure 响应"""
        try:
            data = await call
        except P2PMonitorError as e:
            logger.error(f"{type(e).__name__}: {e}", exc_info=True)
            message = PUBLIC_MESSAGES.get(type(e), "Internal server error")
            return Envelope(success=False, message=message)
        except ValueError as e:
            return Envelope(success=False, message=str(e))
        return Envelope(success=True, message=success_message, data=data)
