# p2p_monitor/collector/p2p_ingestor.py
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from p2p_monitor.client.models import OfferQuery, Side
from p2p_monitor.collector.normalizer import normalize_offer
from p2p_monitor.errors import DuplicateKeyError, NormalizationError
from p2p_monitor.storage.database import Database

if TYPE_CHECKING:
    from p2p_monitor.client.bybit import BybitP2PClient

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    token_id: str
    currency_id: str
    side: int
    snapshot_time: int
    fetched: int = 0
    stored: int = 0
    skipped: int = 0


class P2PIngestor:
    """抓取一页挂单并写入星型模型"""

    def __init__(
        self,
        client: "BybitP2PClient",
        db: Database,
        payment_names: Mapping[int, str] | None = None,
    ):
        self.client = client
        self.db = db
        self.payment_names = dict(payment_names or {})

    async def ingest(self, query: OfferQuery, snapshot_time: int | None = None) -> IngestResult:
        """
        单轮 ETL

        上游错误与 StoreUnavailableError 向上抛出；单条记录的解析失败或主键冲突
        只记录日志并跳过，不影响同页其他记录。
        """
        if snapshot_time is None:
            snapshot_time = int(time.time() * 1000)

        page = await self.client.fetch_offers(query)
        result = IngestResult(
            token_id=query.token_id,
            currency_id=query.currency_id,
            side=query.side,
            snapshot_time=snapshot_time,
            fetched=len(page.items),
        )

        for item in page.items:
            try:
                record = normalize_offer(item, snapshot_time, self.payment_names)
            except NormalizationError as e:
                logger.warning(f"Dropping offer {e.offer_id}: {e}")
                result.skipped += 1
                continue

            try:
                await self.db.store_offer(record)
            except DuplicateKeyError as e:
                logger.error(
                    f"Duplicate snapshot for {query.token_id}/{query.currency_id} "
                    f"side={query.side}: {e}; record={record.offer}"
                )
                result.skipped += 1
                continue
            result.stored += 1

        side_name = Side(query.side).name
        logger.info(
            f"Ingested {query.token_id}/{query.currency_id} {side_name}: "
            f"fetched={result.fetched} stored={result.stored} skipped={result.skipped}"
        )
        return result
