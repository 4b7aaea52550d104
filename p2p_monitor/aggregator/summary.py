# p2p_monitor/aggregator/summary.py
from dataclasses import dataclass, field

from p2p_monitor.client.models import Side
from p2p_monitor.storage.models import PricePoint


@dataclass
class SideStats:
    count: int = 0
    avg_price: float = 0.0
    min_price: float = 0.0
    max_price: float = 0.0


@dataclass
class MarketSummary:
    token_id: str
    currency_id: str
    buy_offers: SideStats = field(default_factory=SideStats)
    sell_offers: SideStats = field(default_factory=SideStats)
    spread: float = 0.0


def calculate_side_stats(prices: list[float]) -> SideStats:
    if not prices:
        return SideStats()
    return SideStats(
        count=len(prices),
        avg_price=sum(prices) / len(prices),
        min_price=min(prices),
        max_price=max(prices),
    )


def calculate_spread(min_sell: float, max_buy: float) -> float:
    """
    价差百分比 = (最低卖价 - 最高买价) / 最高买价 * 100

    假设卖方底价高于买方顶价，任一极值 <= 0 时返回 0。
    """
    if min_sell <= 0 or max_buy <= 0:
        return 0.0
    return (min_sell - max_buy) / max_buy * 100


def build_market_summary(
    token_id: str, currency_id: str, points: list[PricePoint]
) -> MarketSummary:
    buy = calculate_side_stats([p.price for p in points if p.side == Side.BUY])
    sell = calculate_side_stats([p.price for p in points if p.side == Side.SELL])
    return MarketSummary(
        token_id=token_id,
        currency_id=currency_id,
        buy_offers=buy,
        sell_offers=sell,
        spread=calculate_spread(sell.min_price, buy.max_price),
    )
