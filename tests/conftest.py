from decimal import Decimal

import pytest

from seller_ledger.config import Settings
from seller_ledger.ledger import Ledger
from seller_ledger.models import Currency, KycStatus, OrderItem, OrderSettlementRequest
from seller_ledger.permissions import SYSTEM


@pytest.fixture
def ledger():
    ledger = Ledger(Settings(database_url="sqlite://"))
    ledger.start()
    yield ledger
    ledger.close()


@pytest.fixture
def verified_seller(ledger):
    ledger.upsert_seller(SYSTEM, "S-001", KycStatus.VERIFIED, True)
    return "S-001"


@pytest.fixture
def settle(ledger):
    """Settle a single-item order crediting ``payout`` to ``seller``."""

    def _settle(order_id, payout, currency=Currency.GBP, seller="S-001", subtotal=None, **extra):
        payout = Decimal(str(payout))
        subtotal = Decimal(str(subtotal)) if subtotal is not None else payout + Decimal("10.00")
        return ledger.settle_order(SYSTEM, OrderSettlementRequest(
            order_id=order_id,
            currency=currency,
            subtotal=subtotal,
            total=subtotal,
            items=[OrderItem(product_id="P-001", seller_id=seller, unit_price=subtotal)],
            seller_payout=payout,
            platform_fee=subtotal - payout,
            **extra,
        ))

    return _settle
