# tests/conftest.py
from typing import Any

import pytest


def build_raw_offer(**overrides: Any) -> dict[str, Any]:
    offer: dict[str, Any] = {
        "id": "1893741000000000001",
        "accountId": "5100001",
        "userId": "7700001",
        "nickName": "tbc_trader",
        "tokenId": "USDT",
        "tokenName": "USDT",
        "currencyId": "USD",
        "side": 1,
        "priceType": 0,
        "price": "1.02",
        "premium": "0.5",
        "lastQuantity": "950.25",
        "quantity": "1000",
        "frozenQuantity": "10.5",
        "executedQuantity": "39.25",
        "minAmount": "50",
        "maxAmount": "2000",
        "remark": "fast release",
        "status": 10,
        "payments": ["165"],
        "isOnline": True,
        "lastLogoutTime": "1700000000",
        "blocked": "N",
        "makerContact": True,
        "symbolInfo": {
            "id": "42",
            "exchangeId": "301",
            "orgId": "9001",
            "tokenId": "USDT",
            "currencyId": "USD",
            "status": 1,
            "lowerLimitAlarm": 90,
            "upperLimitAlarm": 110,
            "itemDownRange": "70",
            "itemUpRange": "130",
            "currencyMinQuote": "10",
            "currencyMaxQuote": "100000",
            "currencyLowerMaxQuote": "5000",
            "tokenMinQuote": "5",
            "tokenMaxQuote": "50000",
            "kycCurrencyLimit": "1000",
            "itemSideLimit": 3,
            "buyFeeRate": "0",
            "sellFeeRate": "0.001",
            "orderAutoCancelMinute": 15,
            "orderFinishMinute": 30,
            "tradeSide": 9,
            "currency": {"id": "11", "currencyId": "USD", "scale": 2},
            "token": {"id": "12", "tokenId": "USDT", "scale": 4, "sequence": 1},
        },
        "tradingPreferenceSet": {
            "hasUnPostAd": 0,
            "isKyc": 1,
            "isEmail": 1,
            "isMobile": 0,
            "hasRegisterTime": 0,
            "registerTimeThreshold": 0,
            "orderFinishNumberDay30": 120,
            "completeRateDay30": "0.97",
            "nationalLimit": "",
            "hasOrderFinishNumberDay30": 1,
            "hasCompleteRateDay30": 1,
            "hasNationalLimit": 0,
        },
        "version": 3,
        "authStatus": 2,
        "userType": "PERSONAL",
        "paymentPeriod": 15,
        "userMaskId": "a1b2c3",
    }
    offer.update(overrides)
    return offer


@pytest.fixture
def raw_offer() -> dict[str, Any]:
    return build_raw_offer()
