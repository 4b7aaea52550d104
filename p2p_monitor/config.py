from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class UpstreamConfig(BaseModel):
    base_url: str = "https://api2.bybit.com"
    timeout_seconds: float = 15
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    page_size: int = 10
    sort_type: str = "TRADE_PRICE"


class TokenPair(BaseModel):
    token_id: str = "USDT"
    currency_id: str = "USD"


class IngestionConfig(BaseModel):
    pairs: list[TokenPair] = [TokenPair()]
    payment_method_ids: list[int] = [165]
    # 同一上游两次请求之间的最小间隔
    request_pause_seconds: float = Field(default=1.0, ge=0.5)
    interval_minutes: int = 5


class AggregationConfig(BaseModel):
    payment_method_id: int | None = 165
    bucket: str = "1h"
    window_hours: int = 24
    summary_window_hours: int = 24
    latest_offers_limit: int = 50


class DatabaseConfig(BaseModel):
    path: str = "data/p2p.db"
    retention_days: int = Field(default=30, ge=1)
    cleanup_interval_hours: int = 24


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Config(BaseModel):
    upstream: UpstreamConfig = UpstreamConfig()
    ingestion: IngestionConfig = IngestionConfig()
    aggregation: AggregationConfig = AggregationConfig()
    database: DatabaseConfig = DatabaseConfig()
    # method_id -> 支付方式名称
    payment_methods: dict[int, str] = {165: "TBC Bank"}
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f)
    return Config(**(data or {}))
