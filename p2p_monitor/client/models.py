"""Bybit P2P API 数据模型"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class Side(IntEnum):
    """Bybit 原生的方向编码: 0=SELL, 1=BUY"""

    SELL = 0
    BUY = 1


@dataclass
class OfferQuery:
    """单次分页请求参数"""

    token_id: str
    currency_id: str
    side: int
    payment_method_ids: list[int] = field(default_factory=list)
    size: int = 10
    page: int = 1
    amount: str = ""
    sort_type: str = "TRADE_PRICE"

    def to_payload(self) -> dict[str, Any]:
        return {
            "userId": "",
            "tokenId": self.token_id,
            "currencyId": self.currency_id,
            "payment": [str(p) for p in self.payment_method_ids],
            "side": str(self.side),
            "size": str(self.size),
            "page": str(self.page),
            "amount": self.amount,
            "vaMaker": False,
            "bulkMaker": False,
            "canTrade": False,
            "verificationFilter": 0,
            "sortType": self.sort_type,
            "paymentPeriod": [],
            "itemRegion": 1,
        }


@dataclass
class OfferPage:
    """一页原始挂单"""

    count: int
    items: list[dict[str, Any]]
    time_now: str | None = None
