"""
Wiring of the ledger components and the admin-facing operations.

Every operation takes the calling ``Actor`` and checks its capability before
touching the ledger; transport layers only translate requests.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from seller_ledger.config import Settings
from seller_ledger.errors import ForbiddenError, NotFoundError, ValidationError
from seller_ledger.models import (
    Currency,
    FinancialSummary,
    KycStatus,
    OrderSettlementRequest,
    OrderSnapshot,
    Page,
    Payout,
    SellerFinancials,
    TaxRuleSet,
    Transaction,
    TransactionDraft,
    TransactionFilters,
    TransactionType,
)
from seller_ledger.payouts import PayoutEngine
from seller_ledger.permissions import Actor, is_self_service, require
from seller_ledger.processor import CellLocks, TransactionProcessor
from seller_ledger.reporting import export_transactions_csv, financial_summary
from seller_ledger.reversal import ReversalHandler
from seller_ledger.settlement import OrderSettlement
from seller_ledger.store import LedgerStore
from seller_ledger.tax import TaxCalculator

MANUAL_TYPES = frozenset({TransactionType.FEE, TransactionType.ADJUSTMENT, TransactionType.SALE, TransactionType.REFUND})


def _own_records_only(actor: Actor, seller_id: Optional[str]) -> None:
    if is_self_service(actor) and seller_id != actor.id:
        raise ForbiddenError("Sellers can only access their own financial records")


class Ledger:
    def __init__(self, settings: Settings, store: Optional[LedgerStore] = None) -> None:
        self.settings = settings
        self.store = store or LedgerStore(settings.database_url)
        self.locks = CellLocks()
        self.processor = TransactionProcessor(self.store, self.locks)
        self.settlement = OrderSettlement(self.store, self.processor, settings)
        self.payouts = PayoutEngine(self.store, self.processor)
        self.reversals = ReversalHandler(self.store, self.processor)
        self.tax = TaxCalculator(self.store)

    def start(self) -> None:
        self.tax.load()

    def close(self) -> None:
        self.store.dispose()

    # ── transactions ──────────────────────────────────────────────────────────

    def _clamp(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.default_page_size
        if limit < 1:
            raise ValidationError("Invalid page size", {"limit": "must be at least 1"})
        return min(limit, self.settings.max_page_size)

    def list_transactions(
        self,
        actor: Actor,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Page:
        require(actor, "transactions:read")
        filters = filters or TransactionFilters()
        if is_self_service(actor):
            filters = filters.model_copy(update={"seller_id": actor.id})
        if offset < 0:
            raise ValidationError("Invalid offset", {"offset": "must not be negative"})
        return self.store.list_transactions(filters, self._clamp(limit), offset)

    def get_transaction(self, actor: Actor, transaction_id: str) -> Transaction:
        require(actor, "transactions:read")
        tx = self.store.get(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction '{transaction_id}' not found")
        _own_records_only(actor, tx.seller_id)
        return tx

    def export_transactions(self, actor: Actor, filters: Optional[TransactionFilters] = None) -> str:
        require(actor, "transactions:read")
        filters = filters or TransactionFilters()
        if is_self_service(actor):
            filters = filters.model_copy(update={"seller_id": actor.id})
        return export_transactions_csv(self.store, filters)

    def create_manual_transaction(
        self,
        actor: Actor,
        type: TransactionType,
        amount: Decimal,
        currency: Currency,
        seller_id: Optional[str] = None,
        description: str = "",
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        require(actor, "transactions:write")
        if type not in MANUAL_TYPES:
            raise ValidationError(
                "Payouts cannot be entered manually",
                {"type": "use the payout request operation to drain a balance"},
            )
        return self.processor.apply(TransactionDraft(
            seller_id=seller_id,
            type=type,
            amount=amount,
            currency=currency,
            reference_id=reference_id,
            description=description,
            processed_by=actor.display_name,
            idempotency_key=idempotency_key,
        ))

    def reverse_transaction(self, actor: Actor, transaction_id: str) -> Transaction:
        require(actor, "transactions:reverse")
        return self.reversals.reverse(transaction_id, processed_by=actor.display_name)

    # ── payouts / seller directory ───────────────────────────────────────────

    def request_payout(
        self,
        actor: Actor,
        seller_id: str,
        currency: Currency,
        idempotency_key: Optional[str] = None,
    ) -> Payout:
        require(actor, "payouts:request")
        return self.payouts.request(seller_id, currency, actor.display_name, idempotency_key)

    def list_payouts(self, actor: Actor, seller_id: str) -> list[Payout]:
        require(actor, "payouts:read")
        _own_records_only(actor, seller_id)
        return self.payouts.list_for_seller(seller_id)

    def get_financials(self, actor: Actor, seller_id: str) -> SellerFinancials:
        require(actor, "sellers:read")
        _own_records_only(actor, seller_id)
        financials = self.store.get_financials(seller_id)
        if financials is None:
            raise NotFoundError(f"Seller '{seller_id}' not found")
        return financials

    def upsert_seller(self, actor: Actor, seller_id: str, kyc_status: KycStatus, payouts_enabled: bool) -> SellerFinancials:
        """Record verification state handed over by the seller directory."""
        require(actor, "sellers:write")
        with self.store.unit() as unit:
            unit.upsert_seller(seller_id, kyc_status, payouts_enabled)
        return self.store.get_financials(seller_id)

    # ── collaborator handoffs ─────────────────────────────────────────────────

    def settle_order(self, actor: Actor, request: OrderSettlementRequest) -> OrderSnapshot:
        require(actor, "orders:settle")
        return self.settlement.settle(request, processed_by=actor.display_name)

    def record_refund(
        self,
        actor: Actor,
        order_id: str,
        refund_amount: Decimal,
        currency: Currency,
        return_id: Optional[str] = None,
    ) -> Transaction:
        require(actor, "returns:refund")
        return self.settlement.record_refund(order_id, refund_amount, currency, return_id, actor.display_name)

    # ── tax / reporting ───────────────────────────────────────────────────────

    def get_tax_rates(self, actor: Actor) -> TaxRuleSet:
        require(actor, "financials:read")
        return self.tax.current

    def set_tax_rates(self, actor: Actor, rates: dict) -> TaxRuleSet:
        require(actor, "financials:write")
        return self.tax.set_rates(rates, updated_by=actor.display_name)

    def summary(
        self,
        actor: Actor,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        seller_id: Optional[str] = None,
    ) -> FinancialSummary:
        require(actor, "financials:read")
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Invalid date range", {"start_date": "must not be after end_date"})
        return financial_summary(self.store, self.settings.base_currency, start_date, end_date, seller_id)
