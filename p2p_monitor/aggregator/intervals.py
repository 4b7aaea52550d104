# p2p_monitor/aggregator/intervals.py
import re
from dataclasses import dataclass

from p2p_monitor.storage.models import PricePoint

_UNIT_MS = {
    "m": 60 * 1000,
    "minute": 60 * 1000,
    "minutes": 60 * 1000,
    "h": 3600 * 1000,
    "hour": 3600 * 1000,
    "hours": 3600 * 1000,
    "d": 24 * 3600 * 1000,
    "day": 24 * 3600 * 1000,
    "days": 24 * 3600 * 1000,
}

_WIDTH_PATTERN = re.compile(r"^\s*(\d+)\s*([a-z]+)\s*$")


@dataclass
class IntervalBucket:
    bucket_start: int  # ms, UTC 对齐
    avg_price: float
    min_price: float
    max_price: float
    offer_count: int
    avg_premium: float


def parse_bucket_width(width: str) -> int:
    """'15m' / '1h' / '1 hour' / '1 day' -> 毫秒"""
    match = _WIDTH_PATTERN.match(width.lower())
    if not match or match.group(2) not in _UNIT_MS:
        raise ValueError(f"Unsupported bucket width: {width!r}")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f"Bucket width must be positive: {width!r}")
    return amount * _UNIT_MS[match.group(2)]


def bucket_start(timestamp_ms: int, width_ms: int) -> int:
    return timestamp_ms - timestamp_ms % width_ms


def aggregate_intervals(points: list[PricePoint], width_ms: int) -> list[IntervalBucket]:
    """按时间桶聚合价格，空桶不补零"""
    buckets: dict[int, list[PricePoint]] = {}
    for p in points:
        buckets.setdefault(bucket_start(p.snapshot_time, width_ms), []).append(p)

    result = []
    for start in sorted(buckets):
        rows = buckets[start]
        prices = [r.price for r in rows]
        result.append(
            IntervalBucket(
                bucket_start=start,
                avg_price=sum(prices) / len(prices),
                min_price=min(prices),
                max_price=max(prices),
                offer_count=len(rows),
                avg_premium=sum(r.premium for r in rows) / len(rows),
            )
        )
    return result
