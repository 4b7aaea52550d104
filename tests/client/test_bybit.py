import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from p2p_monitor.client.bybit import BybitP2PClient
from p2p_monitor.client.models import OfferPage, OfferQuery, Side
from p2p_monitor.errors import (
    UpstreamMalformedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)


def make_client(status: int = 200, body: str = "", post_side_effect=None) -> BybitP2PClient:
    client = BybitP2PClient()

    mock_response = MagicMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=body)

    mock_session = MagicMock()
    mock_session.post = AsyncMock(return_value=mock_response, side_effect=post_side_effect)
    client._session = mock_session
    return client


def query(side: int = Side.BUY) -> OfferQuery:
    return OfferQuery(token_id="USDT", currency_id="USD", side=side, payment_method_ids=[165])


def test_client_defaults():
    client = BybitP2PClient()
    assert client.base_url == "https://api2.bybit.com"
    assert client._session is None


def test_query_payload_shape():
    payload = OfferQuery(
        token_id="USDT", currency_id="GEL", side=Side.SELL, payment_method_ids=[165, 14], size=20
    ).to_payload()

    assert payload["userId"] == ""
    assert payload["tokenId"] == "USDT"
    assert payload["currencyId"] == "GEL"
    assert payload["payment"] == ["165", "14"]
    assert payload["side"] == "0"
    assert payload["size"] == "20"
    assert payload["page"] == "1"
    assert payload["amount"] == ""
    assert payload["sortType"] == "TRADE_PRICE"
    assert payload["paymentPeriod"] == []
    assert payload["itemRegion"] == 1


async def test_fetch_offers_success():
    body = (
        '{"ret_code": 0, "ret_msg": "SUCCESS", "result": {"count": 2, '
        '"items": [{"id": "1"}, {"id": "2"}]}, "ext_code": "", "ext_info": {}, '
        '"time_now": "1706600000.123"}'
    )
    client = make_client(body=body)

    page = await client.fetch_offers(query())

    assert isinstance(page, OfferPage)
    assert page.count == 2
    assert [item["id"] for item in page.items] == ["1", "2"]
    assert page.time_now == "1706600000.123"

    call = client._session.post.call_args
    assert call.args[0] == "https://api2.bybit.com/fiat/otc/item/online"
    assert call.kwargs["json"]["side"] == "1"


async def test_non_zero_ret_code_is_rejected():
    client = make_client(body='{"ret_code": 10001, "ret_msg": "params error", "result": null}')

    with pytest.raises(UpstreamRejectedError, match="params error") as exc:
        await client.fetch_offers(query())
    assert exc.value.code == 10001
    assert exc.value.message == "params error"


async def test_invalid_json_is_malformed():
    client = make_client(body="<html>oops</html>")
    with pytest.raises(UpstreamMalformedError):
        await client.fetch_offers(query())


async def test_missing_items_is_malformed():
    client = make_client(body='{"ret_code": 0, "ret_msg": "", "result": {"count": 0}}')
    with pytest.raises(UpstreamMalformedError):
        await client.fetch_offers(query())


async def test_http_error_is_unavailable():
    client = make_client(status=503, body="Service Unavailable")
    with pytest.raises(UpstreamUnavailableError) as exc:
        await client.fetch_offers(query())
    assert exc.value.status == 503
    assert exc.value.retryable is True


@pytest.mark.parametrize(
    "error", [aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError()]
)
async def test_transport_error_is_unavailable(error):
    client = make_client(post_side_effect=error)
    with pytest.raises(UpstreamUnavailableError):
        await client.fetch_offers(query())


async def test_invalid_side_is_rejected_before_request():
    client = make_client(body="{}")
    with pytest.raises(ValueError):
        await client.fetch_offers(query(side=2))
    client._session.post.assert_not_called()


async def test_request_without_session():
    client = BybitP2PClient()
    with pytest.raises(RuntimeError, match="Session not initialized"):
        await client.fetch_offers(query())
