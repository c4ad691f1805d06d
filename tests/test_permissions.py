from decimal import Decimal

import pytest

from seller_ledger.errors import ForbiddenError, ValidationError
from seller_ledger.models import Currency, TransactionType
from seller_ledger.permissions import Actor, can_perform, require


def actor(role, id="U-1"):
    return Actor(id=id, role=role)


class TestCanPerform:
    @pytest.mark.parametrize("role,action,allowed", [
        ("admin", "payouts:request", True),
        ("admin", "anything:at_all", True),
        ("finance_manager", "transactions:reverse", True),
        ("finance_manager", "payouts:request", True),
        ("finance_manager", "orders:settle", False),
        ("accountant", "transactions:write", True),
        ("accountant", "transactions:reverse", False),
        ("accountant", "financials:write", True),
        ("accountant", "payouts:request", False),
        ("order_manager", "returns:refund", True),
        ("order_manager", "transactions:write", False),
        ("seller", "payouts:request", False),
        ("seller", "payouts:read", True),
        ("seller", "transactions:write", False),
        ("customer", "transactions:read", False),
        ("unknown_role", "transactions:read", False),
    ])
    def test_role_matrix(self, role, action, allowed):
        assert can_perform(actor(role), action) is allowed

    def test_require_raises(self):
        with pytest.raises(ForbiddenError):
            require(actor("customer"), "financials:read")


class TestLedgerChecks:
    def test_accountant_cannot_request_payout(self, ledger, verified_seller):
        with pytest.raises(ForbiddenError):
            ledger.request_payout(actor("accountant"), "S-001", Currency.GBP)

    def test_seller_sees_only_own_transactions(self, ledger, verified_seller, settle):
        settle("ORD-1", "40.00")
        settle("ORD-2", "10.00", seller="S-002")
        page = ledger.list_transactions(actor("seller", id="S-002"))
        assert page.total == 1
        assert page.items[0].seller_id == "S-002"

    def test_seller_cannot_trigger_payouts(self, ledger, verified_seller, settle):
        settle("ORD-1", "40.00")
        for seller_actor in (actor("seller", id="S-001"), actor("seller", id="S-002")):
            with pytest.raises(ForbiddenError):
                ledger.request_payout(seller_actor, "S-001", Currency.GBP)
        assert ledger.store.get_balance("S-001", Currency.GBP) == Decimal("40.00")
        assert ledger.store.list_payouts("S-001") == []

    def test_seller_reads_own_payouts_only(self, ledger, verified_seller, settle):
        settle("ORD-1", "40.00")
        payout = ledger.request_payout(Actor(id="U-2", role="finance_manager", name="Fin"), "S-001", Currency.GBP)
        assert ledger.store.get(payout.transaction_id).processed_by == "Fin"
        assert [p.id for p in ledger.list_payouts(actor("seller", id="S-001"), "S-001")] == [payout.id]
        with pytest.raises(ForbiddenError):
            ledger.list_payouts(actor("seller", id="S-002"), "S-001")

    def test_manual_payout_entry_rejected(self, ledger, verified_seller):
        with pytest.raises(ValidationError):
            ledger.create_manual_transaction(actor("admin"), TransactionType.PAYOUT, Decimal("-1.00"),
                                             Currency.GBP, seller_id="S-001")
