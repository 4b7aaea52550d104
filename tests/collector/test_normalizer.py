# tests/collector/test_normalizer.py
from datetime import datetime, timezone

import pytest
from conftest import build_raw_offer

from p2p_monitor.collector.normalizer import (
    normalize_offer,
    parse_flag,
    parse_timestamp,
    payment_method_name,
)
from p2p_monitor.errors import NormalizationError

SNAPSHOT = 1706600000000


def test_normalize_offer_fact_fields(raw_offer):
    result = normalize_offer(raw_offer, SNAPSHOT)
    offer = result.offer

    assert offer.snapshot_time == SNAPSHOT
    assert offer.offer_id == 1893741000000000001
    assert offer.user_id == 7700001
    assert offer.account_id == 5100001
    assert offer.side == 1
    assert offer.price == pytest.approx(1.02)
    assert offer.premium == pytest.approx(0.5)
    assert offer.last_quantity == pytest.approx(950.25)
    assert offer.total_quantity == pytest.approx(1000.0)
    assert offer.frozen_quantity == pytest.approx(10.5)
    assert offer.executed_quantity == pytest.approx(39.25)
    assert offer.min_amount == 50.0
    assert offer.max_amount == 2000.0
    assert offer.is_online is True
    assert offer.user_type == "PERSONAL"
    assert offer.payment_period == 15
    assert offer.user_mask_id == "a1b2c3"


def test_numeric_fields_default_to_zero():
    raw = build_raw_offer(premium="", lastQuantity=None, frozenQuantity="")
    del raw["executedQuantity"]

    offer = normalize_offer(raw, SNAPSHOT).offer

    assert offer.premium == 0.0
    assert offer.last_quantity == 0.0
    assert offer.frozen_quantity == 0.0
    assert offer.executed_quantity == 0.0


@pytest.mark.parametrize("price", [None, "", "abc"])
def test_invalid_price_raises(price):
    raw = build_raw_offer(price=price)
    with pytest.raises(NormalizationError) as exc:
        normalize_offer(raw, SNAPSHOT)
    assert exc.value.offer_id == "1893741000000000001"


@pytest.mark.parametrize("side", [2, -1, "x", None, True])
def test_side_outside_sell_buy_is_rejected(side):
    with pytest.raises(NormalizationError):
        normalize_offer(build_raw_offer(side=side), SNAPSHOT)


def test_side_is_carried_verbatim():
    assert normalize_offer(build_raw_offer(side=0), SNAPSHOT).offer.side == 0
    assert normalize_offer(build_raw_offer(side=1), SNAPSHOT).offer.side == 1


def test_missing_offer_id_raises():
    raw = build_raw_offer()
    del raw["id"]
    with pytest.raises(NormalizationError):
        normalize_offer(raw, SNAPSHOT)


def test_unix_seconds_equal_iso_instant():
    from_seconds = parse_timestamp("1700000000")
    from_iso = parse_timestamp("2023-11-14T22:13:20Z")

    assert from_seconds == 1700000000 * 1000
    assert from_seconds == from_iso
    # 若按毫秒解释会落在 1970 年
    assert from_seconds != 1700000000


def test_iso_with_offset_and_naive_iso():
    assert parse_timestamp("2023-11-15T02:13:20+04:00") == 1700000000 * 1000
    assert parse_timestamp("2023-11-14T22:13:20") == 1700000000 * 1000


def test_unparseable_timestamp_is_absent(caplog):
    raw = build_raw_offer(lastLogoutTime="not-a-date")

    offer = normalize_offer(raw, SNAPSHOT).offer

    assert offer.last_logout is None
    assert "Invalid timestamp" in caplog.text


def test_last_logout_from_unix_seconds(raw_offer):
    offer = normalize_offer(raw_offer, SNAPSHOT).offer
    expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert offer.last_logout == int(expected.timestamp() * 1000)


def test_parse_flag():
    assert parse_flag("Y") is True
    assert parse_flag("N") is False
    assert parse_flag("y") is False
    assert parse_flag(None) is False
    assert parse_flag(True) is True


def test_user_dimension(raw_offer):
    user = normalize_offer(build_raw_offer(blocked="Y"), SNAPSHOT).user
    assert user.user_id == 7700001
    assert user.nick_name == "tbc_trader"
    assert user.blocked is True
    assert user.maker_contact is True

    assert normalize_offer(raw_offer, SNAPSHOT).user.blocked is False


def test_payment_methods_and_bridge_rows():
    raw = build_raw_offer(payments=["165", "14"])

    result = normalize_offer(raw, SNAPSHOT, payment_names={165: "TBC Bank"})

    assert [(m.method_id, m.name) for m in result.payment_methods] == [
        (165, "TBC Bank"),
        (14, "Payment Method 14"),
    ]
    assert [(p.snapshot_time, p.offer_id, p.method_id) for p in result.offer_payments] == [
        (SNAPSHOT, 1893741000000000001, 165),
        (SNAPSHOT, 1893741000000000001, 14),
    ]


def test_payment_method_name_placeholder():
    assert payment_method_name(7) == "Payment Method 7"
    assert payment_method_name(7, {7: "Bank of Georgia"}) == "Bank of Georgia"


def test_no_payments_means_no_bridge_rows():
    result = normalize_offer(build_raw_offer(payments=[]), SNAPSHOT)
    assert result.payment_methods == []
    assert result.offer_payments == []


def test_missing_trading_preferences_does_not_fail_fact():
    raw = build_raw_offer()
    del raw["tradingPreferenceSet"]

    result = normalize_offer(raw, SNAPSHOT)

    assert result.trading_preferences is None
    assert result.offer.offer_id == 1893741000000000001


def test_trading_preferences(raw_offer):
    prefs = normalize_offer(raw_offer, SNAPSHOT).trading_preferences

    assert prefs is not None
    assert prefs.snapshot_time == SNAPSHOT
    assert prefs.is_kyc is True
    assert prefs.is_email_verified is True
    assert prefs.is_mobile_verified is False
    assert prefs.has_unposted_ad is False
    assert prefs.order_finish_30d == 120
    assert prefs.complete_rate_30d == pytest.approx(0.97)
    assert prefs.national_limit is None


def test_missing_symbol_info_emits_no_dimension():
    raw = build_raw_offer()
    del raw["symbolInfo"]

    result = normalize_offer(raw, SNAPSHOT)

    assert result.symbol_info is None
    assert [a.asset_id for a in result.assets] == ["USDT", "USD"]
    assert result.assets[0].scale is None


def test_symbol_info_and_asset_metadata(raw_offer):
    result = normalize_offer(raw_offer, SNAPSHOT)
    info = result.symbol_info

    assert info is not None
    assert info.symbol_id == 42
    assert info.exchange_id == 301
    assert info.item_down_range == 70.0
    assert info.currency_lower_max == 5000.0
    assert info.buy_fee_rate == 0.0
    assert info.sell_fee_rate == pytest.approx(0.001)
    assert info.order_auto_cancel == 15

    token, currency = result.assets
    assert (token.asset_id, token.scale, token.sequence) == ("USDT", 4, 1)
    assert (currency.asset_id, currency.scale, currency.sequence) == ("USD", 2, None)
