import csv
import io
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from seller_ledger.currency import convert
from seller_ledger.models import (
    Currency,
    FinancialSummary,
    TransactionFilters,
    TransactionType,
    TypeBreakdown,
    zero_map,
)
from seller_ledger.store import LedgerStore

_ZERO = Decimal("0.00")

CSV_HEADER = ["ID", "Date", "Seller", "Type", "Amount", "Currency", "Description", "Reference ID", "Processed By"]


def financial_summary(
    store: LedgerStore,
    base_currency: Currency,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    seller_id: Optional[str] = None,
) -> FinancialSummary:
    """Dashboard aggregates, recomputed from the full filtered record set on every call."""
    orders = store.list_orders(start_date, end_date, seller_id)
    txns = store.list_transactions(
        TransactionFilters(seller_id=seller_id, start_date=start_date, end_date=end_date)
    ).items

    # ── 1. Order-side totals ─────────────────────────────────────────────────
    sales = zero_map()
    taxes = zero_map()
    taxes_by_country: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    revenue_by_day: dict[str, Decimal] = defaultdict(lambda: _ZERO)
    platform_revenue = _ZERO

    for order in orders:
        sales[order.currency] += order.subtotal
        taxes[order.currency] += order.taxes
        platform_revenue += order.platform_fee.base
        revenue_by_day[order.created_at.date().isoformat()] += order.platform_fee.base
        if order.country:
            taxes_base, _ = convert(order.taxes, order.currency, base_currency)
            taxes_by_country[order.country] += taxes_base

    # ── 2. Ledger-side totals ────────────────────────────────────────────────
    refunds = zero_map()
    net_refunds = zero_map()
    breakdown: dict[TransactionType, TypeBreakdown] = {
        tx_type: TypeBreakdown(count=0, amount=zero_map()) for tx_type in TransactionType
    }
    for tx in txns:
        if tx.type == TransactionType.REFUND:
            refunds[tx.currency] += abs(tx.amount)
            net_refunds[tx.currency] -= tx.amount
        entry = breakdown[tx.type]
        entry.count += 1
        entry.amount[tx.currency] += tx.amount

    # ── 3. Outstanding balances (current state, not date-bound) ──────────────
    outstanding = store.balance_totals(seller_id)
    outstanding_base = sum(
        (convert(amount, cur, base_currency)[0] for cur, amount in outstanding.items()), _ZERO
    )

    return FinancialSummary(
        period_start=str(start_date) if start_date else None,
        period_end=str(end_date) if end_date else None,
        seller_id=seller_id,
        base_currency=base_currency,
        total_sales_value=sales,
        total_platform_revenue=platform_revenue,
        total_taxes_collected=taxes,
        taxes_by_country=dict(taxes_by_country),
        total_refunds=refunds,
        net_refunds=net_refunds,
        outstanding_balance=outstanding,
        outstanding_balance_base=outstanding_base,
        transaction_breakdown=breakdown,
        revenue_by_day=dict(sorted(revenue_by_day.items())),
        order_count=len(orders),
    )


def export_transactions_csv(store: LedgerStore, filters: Optional[TransactionFilters] = None) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for tx in store.list_transactions(filters).items:
        writer.writerow([
            tx.id,
            tx.created_at.isoformat(timespec="seconds"),
            tx.seller_id or "N/A",
            tx.type.value,
            str(tx.amount),
            tx.currency.value,
            tx.description,
            tx.reference_id or "",
            tx.processed_by or "N/A",
        ])
    return buf.getvalue()
