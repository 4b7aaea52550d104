# p2p_monitor/collector/normalizer.py
"""原始挂单 -> 星型模型实体"""

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from p2p_monitor.client.models import Side
from p2p_monitor.errors import NormalizationError
from p2p_monitor.storage.models import (
    Asset,
    ExternalUser,
    NormalizedOffer,
    OfferPayment,
    OfferSnapshot,
    PaymentMethod,
    SymbolInfo,
    TradingPreferences,
)

logger = logging.getLogger(__name__)

_UNIX_SECONDS = re.compile(r"^\d+$")


def to_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def parse_timestamp(value: Any) -> int | None:
    """
    解析时间戳为 epoch 毫秒

    纯数字字符串按 Unix 秒处理，其余按 ISO-8601 解析。
    无法解析时返回 None 并记录警告。
    """
    if value is None or value == "":
        return None
    text = str(value).strip()
    try:
        if _UNIX_SECONDS.match(text):
            return int(text) * 1000
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_millis(datetime.fromisoformat(text))
    except (ValueError, OverflowError):
        logger.warning(f"Invalid timestamp: {value!r}")
        return None


def parse_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid numeric value {value!r}, using {default}")
        return default


def parse_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return parse_float(value)


def parse_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer value {value!r}, using {default}")
        return default


def parse_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value)


def parse_flag(value: Any) -> bool:
    """单字符编码 Y -> True，其余 -> False"""
    if isinstance(value, bool):
        return value
    return value == "Y"


def _required_id(raw: Mapping[str, Any], key: str, offer_id: str | None) -> int:
    value = raw.get(key)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise NormalizationError(f"Missing or invalid {key}: {value!r}", offer_id) from None


def _parse_side(value: Any, offer_id: str | None) -> int:
    if isinstance(value, bool):
        raise NormalizationError(f"Invalid side: {value!r}", offer_id)
    try:
        side = int(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"Invalid side: {value!r}", offer_id) from None
    if side not in (Side.SELL, Side.BUY):
        raise NormalizationError(f"Side out of range: {side}", offer_id)
    return side


def _parse_price(value: Any, offer_id: str | None) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"Invalid price: {value!r}", offer_id) from None


def payment_method_name(method_id: int, names: Mapping[int, str] | None = None) -> str:
    if names and method_id in names:
        return names[method_id]
    return f"Payment Method {method_id}"


def _normalize_symbol_info(info: Mapping[str, Any]) -> SymbolInfo:
    return SymbolInfo(
        symbol_id=int(info["id"]),
        exchange_id=parse_optional_int(info.get("exchangeId")),
        org_id=parse_optional_int(info.get("orgId")),
        token_id=info.get("tokenId"),
        currency_id=info.get("currencyId"),
        status=parse_int(info.get("status")),
        lower_limit_alarm=parse_float(info.get("lowerLimitAlarm")),
        upper_limit_alarm=parse_float(info.get("upperLimitAlarm")),
        item_down_range=parse_float(info.get("itemDownRange")),
        item_up_range=parse_float(info.get("itemUpRange")),
        currency_min_quote=parse_float(info.get("currencyMinQuote")),
        currency_max_quote=parse_float(info.get("currencyMaxQuote")),
        token_min_quote=parse_float(info.get("tokenMinQuote")),
        token_max_quote=parse_float(info.get("tokenMaxQuote")),
        currency_lower_max=parse_float(info.get("currencyLowerMaxQuote")),
        buy_fee_rate=parse_optional_float(info.get("buyFeeRate")),
        sell_fee_rate=parse_optional_float(info.get("sellFeeRate")),
        order_auto_cancel=parse_int(info.get("orderAutoCancelMinute")),
        order_finish_minute=parse_int(info.get("orderFinishMinute")),
    )


def _normalize_preferences(
    prefs: Mapping[str, Any], snapshot_time: int, offer_id: int
) -> TradingPreferences:
    return TradingPreferences(
        snapshot_time=snapshot_time,
        offer_id=offer_id,
        has_unposted_ad=prefs.get("hasUnPostAd") == 1,
        is_kyc=prefs.get("isKyc") == 1,
        is_email_verified=prefs.get("isEmail") == 1,
        is_mobile_verified=prefs.get("isMobile") == 1,
        register_time_threshold=parse_optional_int(prefs.get("registerTimeThreshold")),
        order_finish_30d=parse_optional_int(prefs.get("orderFinishNumberDay30")),
        complete_rate_30d=parse_float(prefs.get("completeRateDay30")),
        national_limit=prefs.get("nationalLimit") or None,
    )


def _build_assets(
    token_id: str, currency_id: str, info: Mapping[str, Any] | None
) -> list[Asset]:
    token = Asset(asset_id=token_id)
    currency = Asset(asset_id=currency_id)
    if info:
        token_meta = info.get("token") or {}
        if token_meta.get("tokenId", token_id) == token_id:
            token.scale = parse_optional_int(token_meta.get("scale"))
            token.sequence = parse_optional_int(token_meta.get("sequence"))
        currency_meta = info.get("currency") or {}
        if currency_meta.get("currencyId", currency_id) == currency_id:
            currency.scale = parse_optional_int(currency_meta.get("scale"))
    return [token, currency]


def normalize_offer(
    raw: Mapping[str, Any],
    snapshot_time: int,
    payment_names: Mapping[int, str] | None = None,
) -> NormalizedOffer:
    """
    将一条原始挂单拆分为事实表与维度表实体

    Args:
        raw: 上游返回的单条 item
        snapshot_time: 本轮抓取时间 (ms)
        payment_names: method_id -> 名称映射，缺失时使用占位名称

    Raises:
        NormalizationError: 主键、side 或 price 无法解析
    """
    raw_id = raw.get("id")
    ref = str(raw_id) if raw_id is not None else None

    offer_id = _required_id(raw, "id", ref)
    user_id = _required_id(raw, "userId", ref)
    account_id = _required_id(raw, "accountId", ref)
    side = _parse_side(raw.get("side"), ref)
    price = _parse_price(raw.get("price"), ref)

    token_id = raw.get("tokenId")
    currency_id = raw.get("currencyId")
    if not token_id or not currency_id:
        raise NormalizationError("Missing tokenId or currencyId", ref)

    offer = OfferSnapshot(
        snapshot_time=snapshot_time,
        offer_id=offer_id,
        account_id=account_id,
        user_id=user_id,
        token_id=token_id,
        currency_id=currency_id,
        side=side,
        price_type=parse_int(raw.get("priceType")),
        price=price,
        premium=parse_float(raw.get("premium")),
        last_quantity=parse_float(raw.get("lastQuantity")),
        total_quantity=parse_float(raw.get("quantity")),
        frozen_quantity=parse_float(raw.get("frozenQuantity")),
        executed_quantity=parse_float(raw.get("executedQuantity")),
        min_amount=parse_float(raw.get("minAmount")),
        max_amount=parse_float(raw.get("maxAmount")),
        status=parse_int(raw.get("status")),
        is_online=bool(raw.get("isOnline") or False),
        remark=raw.get("remark"),
        last_logout=parse_timestamp(raw.get("lastLogoutTime")),
        version=parse_int(raw.get("version")),
        auth_status=parse_int(raw.get("authStatus")),
        user_type=raw.get("userType") or "regular",
        payment_period=parse_int(raw.get("paymentPeriod")),
        user_mask_id=raw.get("userMaskId") or str(user_id),
    )

    user = ExternalUser(
        user_id=user_id,
        account_id=account_id,
        nick_name=raw.get("nickName"),
        blocked=parse_flag(raw.get("blocked")),
        maker_contact=parse_flag(raw.get("makerContact")),
    )

    methods: list[PaymentMethod] = []
    links: list[OfferPayment] = []
    for payment_id in raw.get("payments") or []:
        try:
            method_id = int(payment_id)
        except (TypeError, ValueError):
            logger.warning(f"Skipping invalid payment id {payment_id!r} on offer {ref}")
            continue
        methods.append(PaymentMethod(method_id, payment_method_name(method_id, payment_names)))
        links.append(OfferPayment(snapshot_time, offer_id, method_id))

    prefs_raw = raw.get("tradingPreferenceSet")
    prefs = _normalize_preferences(prefs_raw, snapshot_time, offer_id) if prefs_raw else None

    info_raw = raw.get("symbolInfo")
    symbol_info = None
    if info_raw:
        try:
            symbol_info = _normalize_symbol_info(info_raw)
        except (KeyError, TypeError, ValueError) as e:
            # 维度可选，缺主键时只跳过 symbol_info
            logger.warning(f"Ignoring symbolInfo on offer {ref}: {e}")

    return NormalizedOffer(
        offer=offer,
        user=user,
        payment_methods=methods,
        offer_payments=links,
        trading_preferences=prefs,
        symbol_info=symbol_info,
        assets=_build_assets(token_id, currency_id, info_raw),
    )
