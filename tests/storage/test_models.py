# tests/storage/test_models.py


def test_asset_defaults():
    from p2p_monitor.storage.models import Asset

    asset = Asset(asset_id="USDT")
    assert asset.scale is None
    assert asset.sequence is None


def test_normalized_offer_defaults():
    from p2p_monitor.storage.models import ExternalUser, NormalizedOffer, OfferSnapshot

    offer = OfferSnapshot(
        snapshot_time=1706600000000,
        offer_id=1,
        account_id=2,
        user_id=3,
        token_id="USDT",
        currency_id="USD",
        side=0,
        price_type=0,
        price=1.0,
        premium=0.0,
        last_quantity=0.0,
        total_quantity=0.0,
        frozen_quantity=0.0,
        executed_quantity=0.0,
        min_amount=0.0,
        max_amount=0.0,
        status=10,
        is_online=True,
        remark=None,
        last_logout=None,
        version=0,
        auth_status=0,
        user_type="regular",
        payment_period=0,
        user_mask_id="3",
    )
    record = NormalizedOffer(offer=offer, user=ExternalUser(3, 2, None, False, False))

    assert record.payment_methods == []
    assert record.offer_payments == []
    assert record.trading_preferences is None
    assert record.symbol_info is None
    assert record.assets == []
