# p2p_monitor/storage/models.py
from dataclasses import dataclass, field


@dataclass
class OfferSnapshot:
    snapshot_time: int  # 抓取时间 (ms)
    offer_id: int
    account_id: int
    user_id: int
    token_id: str
    currency_id: str
    side: int  # 0=SELL / 1=BUY
    price_type: int
    price: float
    premium: float
    last_quantity: float
    total_quantity: float
    frozen_quantity: float
    executed_quantity: float
    min_amount: float
    max_amount: float
    status: int
    is_online: bool
    remark: str | None
    last_logout: int | None  # ms
    version: int
    auth_status: int
    user_type: str
    payment_period: int
    user_mask_id: str


@dataclass
class SymbolInfo:
    symbol_id: int
    exchange_id: int | None
    org_id: int | None
    token_id: str | None
    currency_id: str | None
    status: int
    lower_limit_alarm: float
    upper_limit_alarm: float
    item_down_range: float
    item_up_range: float
    currency_min_quote: float
    currency_max_quote: float
    token_min_quote: float
    token_max_quote: float
    currency_lower_max: float
    buy_fee_rate: float | None
    sell_fee_rate: float | None
    order_auto_cancel: int
    order_finish_minute: int


@dataclass
class ExternalUser:
    user_id: int
    account_id: int
    nick_name: str | None
    blocked: bool
    maker_contact: bool


@dataclass
class PaymentMethod:
    method_id: int
    name: str


@dataclass
class OfferPayment:
    snapshot_time: int
    offer_id: int
    method_id: int


@dataclass
class TradingPreferences:
    snapshot_time: int
    offer_id: int
    has_unposted_ad: bool
    is_kyc: bool
    is_email_verified: bool
    is_mobile_verified: bool
    register_time_threshold: int | None
    order_finish_30d: int | None
    complete_rate_30d: float
    national_limit: str | None


@dataclass
class Asset:
    asset_id: str  # token 或法币代码
    scale: int | None = None
    sequence: int | None = None


@dataclass
class NormalizedOffer:
    """一条原始挂单拆分出的全部实体"""

    offer: OfferSnapshot
    user: ExternalUser
    payment_methods: list[PaymentMethod] = field(default_factory=list)
    offer_payments: list[OfferPayment] = field(default_factory=list)
    trading_preferences: TradingPreferences | None = None
    symbol_info: SymbolInfo | None = None
    assets: list[Asset] = field(default_factory=list)


@dataclass
class PricePoint:
    """聚合用的事实表投影"""

    snapshot_time: int
    side: int
    price: float
    premium: float


@dataclass
class LatestOffer:
    snapshot_time: int  # 组内最新抓取时间
    offer_id: int
    account_id: int
    user_id: int
    token_id: str
    currency_id: str
    side: int
    price: float  # 组内均价
    total_quantity: float  # 组内平均数量
