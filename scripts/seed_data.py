"""
Deterministic demo-data generator.

Produces:
  - 3 sellers (two verified with payouts enabled, one still pending KYC)
  - 120 settled orders spread over Jan 2026 in GBP / USD / EUR / JPY
    - ~10 % partially refunded through completed returns
  - a handful of manual fees, one of them reversed
  - one completed GBP payout
"""

import random
from datetime import datetime, timedelta
from decimal import Decimal

from seller_ledger.currency import money
from seller_ledger.ledger import Ledger
from seller_ledger.models import (
    Currency,
    KycStatus,
    OrderItem,
    OrderSettlementRequest,
    TransactionType,
)
from seller_ledger.permissions import SYSTEM

SEED = 42
START = datetime(2026, 1, 1)
END   = datetime(2026, 1, 31, 23, 59, 59)

COUNTRIES = ["GB", "US", "CA", "AU", "FR", "JP"]


def _rand_dt(rng: random.Random, lo: datetime = START, hi: datetime = END) -> datetime:
    delta = hi - lo
    secs = rng.randint(0, int(delta.total_seconds()))
    return lo + timedelta(seconds=secs)


def seed(ledger: Ledger) -> None:
    rng = random.Random(SEED)

    # ── sellers ──────────────────────────────────────────────────────────────
    sellers = {
        "S-001": (KycStatus.VERIFIED, True),
        "S-002": (KycStatus.VERIFIED, True),
        "S-003": (KycStatus.PENDING, False),
    }
    for seller_id, (kyc, enabled) in sellers.items():
        ledger.upsert_seller(SYSTEM, seller_id, kyc, enabled)

    # currency pools per seller (cross-currency sellers)
    seller_currencies = {
        "S-001": [Currency.GBP, Currency.GBP, Currency.GBP, Currency.EUR],
        "S-002": [Currency.USD, Currency.USD, Currency.GBP],
        "S-003": [Currency.JPY, Currency.JPY, Currency.USD],
    }

    # subtotal ranges per currency (realistic ticket sizes)
    amount_ranges = {
        Currency.GBP: (8, 250),
        Currency.USD: (10, 300),
        Currency.EUR: (9, 280),
        Currency.JPY: (1_200, 40_000),
    }

    # ── orders ───────────────────────────────────────────────────────────────
    settled = []
    for n in range(1, 121):
        seller_id = rng.choice(list(sellers))
        currency  = rng.choice(seller_currencies[seller_id])
        lo, hi    = amount_ranges[currency]
        subtotal  = money(Decimal(str(round(rng.uniform(lo, hi), 2))))
        shipping  = money(Decimal(rng.choice(["0", "3.99", "4.99", "9.99"])))
        country   = rng.choice(COUNTRIES)
        taxes     = ledger.tax.tax_for(subtotal, country)
        discount  = money(subtotal * Decimal("0.10")) if rng.random() < 0.15 else Decimal("0.00")
        order = ledger.settle_order(SYSTEM, OrderSettlementRequest(
            order_id=f"ORD-{n:04d}",
            currency=currency,
            subtotal=subtotal,
            shipping_cost=shipping,
            taxes=taxes,
            discount_amount=discount,
            total=subtotal + shipping + taxes - discount,
            items=[OrderItem(product_id=f"P-{rng.randint(1, 80):03d}", seller_id=seller_id,
                             quantity=1, unit_price=subtotal)],
            country=country,
            created_at=_rand_dt(rng),
        ))
        settled.append(order)

    # ── refunds (completed returns) ──────────────────────────────────────────
    for n, order in enumerate(rng.sample(settled, 12), start=1):
        ledger.record_refund(SYSTEM, order.order_id, money(order.subtotal / 2), order.currency,
                             return_id=f"RET-{n:03d}")

    # ── manual fees, one reversed ────────────────────────────────────────────
    fees = [
        ledger.create_manual_transaction(SYSTEM, TransactionType.FEE, Decimal("-5.00"), Currency.GBP,
                                         seller_id="S-001", description="Listing fee"),
        ledger.create_manual_transaction(SYSTEM, TransactionType.FEE, Decimal("-7.50"), Currency.USD,
                                         seller_id="S-002", description="Promotion fee"),
        ledger.create_manual_transaction(SYSTEM, TransactionType.ADJUSTMENT, Decimal("12.00"), Currency.GBP,
                                         description="Platform correction"),
    ]
    ledger.reverse_transaction(SYSTEM, fees[0].id)

    # ── one payout ───────────────────────────────────────────────────────────
    if ledger.store.get_balance("S-001", Currency.GBP) > 0:
        ledger.request_payout(SYSTEM, "S-001", Currency.GBP)
