"""
Unit tests for the transaction processor and the balance invariant.
"""

import random
from decimal import Decimal

import pytest

from seller_ledger.errors import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from seller_ledger.models import Currency, KycStatus, TransactionDraft, TransactionType
from seller_ledger.permissions import SYSTEM


# ── helpers ───────────────────────────────────────────────────────────────────

def draft(type, amount, seller="S-001", currency=Currency.GBP, **kw):
    return TransactionDraft(seller_id=seller, type=type, amount=Decimal(str(amount)), currency=currency, **kw)


def balance(ledger, seller="S-001", currency=Currency.GBP):
    return ledger.store.get_balance(seller, currency)


# ── tests ─────────────────────────────────────────────────────────────────────

class TestTypeSemantics:
    def test_sale_credits_balance_and_earnings(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.SALE, "40.00"))
        fin = ledger.store.get_financials("S-001")
        assert fin.balance[Currency.GBP] == Decimal("40.00")
        assert fin.total_earnings[Currency.GBP] == Decimal("40.00")
        assert fin.balance[Currency.USD] == Decimal("0.00")

    def test_negative_sale_rejected(self, ledger, verified_seller):
        with pytest.raises(ValidationError) as exc:
            ledger.processor.apply(draft(TransactionType.SALE, "-1.00"))
        assert "amount" in exc.value.fields
        assert balance(ledger) == Decimal("0.00")

    def test_fee_may_push_balance_negative(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.FEE, "-5.00"))
        assert balance(ledger) == Decimal("-5.00")

    def test_positive_adjustment_does_not_touch_earnings(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.ADJUSTMENT, "12.50"))
        fin = ledger.store.get_financials("S-001")
        assert fin.balance[Currency.GBP] == Decimal("12.50")
        assert fin.total_earnings[Currency.GBP] == Decimal("0.00")

    def test_refund_must_be_negative(self, ledger, verified_seller):
        with pytest.raises(ValidationError):
            ledger.processor.apply(draft(TransactionType.REFUND, "10.00"))

    def test_refund_after_payout_goes_negative(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.SALE, "30.00"))
        ledger.payouts.request("S-001", Currency.GBP)
        ledger.processor.apply(draft(TransactionType.REFUND, "-10.00"))
        assert balance(ledger) == Decimal("-10.00")

    def test_platform_only_adjustment_has_no_balance(self, ledger):
        tx = ledger.processor.apply(draft(TransactionType.ADJUSTMENT, "12.00", seller=None))
        assert tx.seller_id is None
        assert ledger.store.get(tx.id).amount == Decimal("12.00")

    def test_amounts_are_quantised(self, ledger, verified_seller):
        tx = ledger.processor.apply(draft(TransactionType.SALE, "10.005"))
        assert tx.amount == Decimal("10.01")


class TestValidation:
    def test_sale_requires_seller(self, ledger):
        with pytest.raises(ValidationError) as exc:
            ledger.processor.apply(draft(TransactionType.SALE, "1.00", seller=None))
        assert "seller_id" in exc.value.fields

    def test_unknown_seller_not_found(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.processor.apply(draft(TransactionType.FEE, "-1.00", seller="NOPE"))

    def test_non_finite_amount_rejected(self, ledger, verified_seller):
        bad = TransactionDraft.model_construct(
            seller_id="S-001", type=TransactionType.FEE, amount=Decimal("NaN"), currency=Currency.GBP,
        )
        with pytest.raises(ValidationError) as exc:
            ledger.processor.apply(bad)
        assert "amount" in exc.value.fields

    def test_unknown_currency_rejected(self, ledger, verified_seller):
        bad = TransactionDraft.model_construct(
            seller_id="S-001", type=TransactionType.FEE, amount=Decimal("-1.00"), currency="XYZ",
        )
        with pytest.raises(ValidationError) as exc:
            ledger.processor.apply(bad)
        assert "currency" in exc.value.fields


class TestPayoutDrain:
    def test_payout_must_match_current_balance(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.SALE, "40.00"))
        with pytest.raises(ConcurrencyConflictError):
            ledger.processor.apply(draft(TransactionType.PAYOUT, "-30.00"))
        assert balance(ledger) == Decimal("40.00")
        assert ledger.store.list_by_seller("S-001").total == 1

    def test_payout_against_empty_balance(self, ledger, verified_seller):
        with pytest.raises(InsufficientBalanceError):
            ledger.processor.apply(draft(TransactionType.PAYOUT, "-1.00"))

    def test_exact_drain_zeroes_balance(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.SALE, "40.00"))
        ledger.processor.apply(draft(TransactionType.PAYOUT, "-40.00"))
        assert balance(ledger) == Decimal("0.00")


class TestIdempotency:
    def test_same_key_posts_once(self, ledger, verified_seller):
        first = ledger.processor.apply(draft(TransactionType.FEE, "-5.00", idempotency_key="fee-1"))
        again = ledger.processor.apply(draft(TransactionType.FEE, "-5.00", idempotency_key="fee-1"))
        assert again.id == first.id
        assert balance(ledger) == Decimal("-5.00")

    def test_reused_key_with_other_amount_rejected(self, ledger, verified_seller):
        ledger.processor.apply(draft(TransactionType.FEE, "-5.00", idempotency_key="fee-1"))
        with pytest.raises(ValidationError) as exc:
            ledger.processor.apply(draft(TransactionType.FEE, "-7.50", idempotency_key="fee-1"))
        assert set(exc.value.fields) == {"amount"}
        assert balance(ledger) == Decimal("-5.00")

    def test_reused_key_for_other_seller_rejected(self, ledger, verified_seller):
        ledger.upsert_seller(SYSTEM, "S-002", KycStatus.VERIFIED, True)
        ledger.processor.apply(draft(TransactionType.FEE, "-5.00", idempotency_key="fee-1"))
        with pytest.raises(ValidationError):
            ledger.processor.apply(draft(TransactionType.FEE, "-5.00", seller="S-002", idempotency_key="fee-1"))
        assert balance(ledger, seller="S-002") == Decimal("0.00")


class TestBalanceInvariant:
    def test_balance_equals_sum_of_transactions(self, ledger, settle):
        rng = random.Random(7)
        for seller in ("S-001", "S-002"):
            ledger.upsert_seller(SYSTEM, seller, KycStatus.VERIFIED, True)

        posted = []
        for n in range(60):
            seller = rng.choice(["S-001", "S-002"])
            currency = rng.choice([Currency.GBP, Currency.EUR])
            roll = rng.random()
            if roll < 0.4:
                settle(f"ORD-{n}", Decimal(rng.randint(1, 200)), currency=currency, seller=seller)
            elif roll < 0.7:
                tx = ledger.processor.apply(draft(rng.choice([TransactionType.FEE, TransactionType.ADJUSTMENT]),
                                                  Decimal(rng.randint(-50, 50)), seller=seller, currency=currency))
                posted.append(tx)
            elif roll < 0.8 and posted:
                candidate = rng.choice(posted)
                if ledger.store.find_reversal_of(candidate.id) is None:
                    ledger.reversals.reverse(candidate.id)
            elif balance(ledger, seller, currency) > 0:
                ledger.payouts.request(seller, currency)

        for seller in ("S-001", "S-002"):
            for currency in Currency:
                assert balance(ledger, seller, currency) == ledger.store.sum_for_cell(seller, currency)
