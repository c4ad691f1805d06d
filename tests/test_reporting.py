"""
Dashboard aggregates and CSV export.
"""

from datetime import date, datetime
from decimal import Decimal

from seller_ledger.models import Currency, KycStatus, TransactionFilters, TransactionType
from seller_ledger.permissions import SYSTEM
from seller_ledger.reporting import CSV_HEADER, export_transactions_csv, financial_summary
from seller_ledger.store import utcnow

JAN5  = datetime(2026, 1, 5, 12, 0)
JAN10 = datetime(2026, 1, 10, 12, 0)
FEB2  = datetime(2026, 2, 2, 9, 30)


def populate(ledger, settle):
    ledger.upsert_seller(SYSTEM, "S-001", KycStatus.VERIFIED, True)
    ledger.upsert_seller(SYSTEM, "S-002", KycStatus.VERIFIED, True)
    settle("ORD-1", "40.00", subtotal="50.00", created_at=JAN5, country="GB")
    settle("ORD-2", "80.00", subtotal="100.00", created_at=JAN10, seller="S-002", country="US")
    settle("ORD-3", "90.00", subtotal="100.00", currency=Currency.USD, created_at=FEB2)
    ledger.record_refund(SYSTEM, "ORD-1", Decimal("10.00"), Currency.GBP)


class TestSummary:
    def test_totals_over_all_orders(self, ledger, settle):
        populate(ledger, settle)
        s = financial_summary(ledger.store, Currency.GBP)

        assert s.order_count == 3
        assert s.total_sales_value[Currency.GBP] == Decimal("150.00")
        assert s.total_sales_value[Currency.USD] == Decimal("100.00")
        # 10 + 20 GBP, plus 10 USD * 0.79
        assert s.total_platform_revenue == Decimal("37.90")
        assert s.total_refunds[Currency.GBP] == Decimal("10.00")
        assert s.outstanding_balance[Currency.GBP] == Decimal("110.00")
        assert s.outstanding_balance[Currency.USD] == Decimal("90.00")
        assert s.outstanding_balance_base == Decimal("181.10")

    def test_date_range_limits_orders(self, ledger, settle):
        populate(ledger, settle)
        s = financial_summary(ledger.store, Currency.GBP, date(2026, 1, 1), date(2026, 1, 31))
        assert s.order_count == 2
        assert s.total_platform_revenue == Decimal("30.00")
        assert s.revenue_by_day == {"2026-01-05": Decimal("10.00"), "2026-01-10": Decimal("20.00")}

    def test_seller_filter(self, ledger, settle):
        populate(ledger, settle)
        s = financial_summary(ledger.store, Currency.GBP, seller_id="S-002")
        assert s.order_count == 1
        assert s.outstanding_balance[Currency.GBP] == Decimal("80.00")
        assert s.total_refunds[Currency.GBP] == Decimal("0.00")

    def test_reversed_refund_counts_both_entries(self, ledger, settle):
        populate(ledger, settle)
        [refund] = ledger.store.list_transactions(TransactionFilters(type=TransactionType.REFUND)).items
        ledger.reversals.reverse(refund.id)
        s = financial_summary(ledger.store, Currency.GBP)
        assert s.total_refunds[Currency.GBP] == Decimal("20.00")
        assert s.net_refunds[Currency.GBP] == Decimal("0.00")

    def test_breakdown_by_type(self, ledger, settle):
        populate(ledger, settle)
        s = financial_summary(ledger.store, Currency.GBP)
        assert s.transaction_breakdown[TransactionType.SALE].count == 3
        assert s.transaction_breakdown[TransactionType.REFUND].amount[Currency.GBP] == Decimal("-10.00")
        assert s.transaction_breakdown[TransactionType.PAYOUT].count == 0

    def test_taxes_by_country(self, ledger, settle):
        populate(ledger, settle)
        s = financial_summary(ledger.store, Currency.GBP)
        assert set(s.taxes_by_country) == {"GB", "US"}


class TestCsvExport:
    def test_header_and_rows(self, ledger, settle):
        populate(ledger, settle)
        lines = export_transactions_csv(ledger.store).splitlines()
        assert lines[0] == ",".join(CSV_HEADER)
        assert len(lines) == 5

    def test_filters_apply(self, ledger, settle):
        populate(ledger, settle)
        today = utcnow().date()
        body = export_transactions_csv(
            ledger.store, TransactionFilters(type=TransactionType.REFUND, start_date=today, end_date=today)
        )
        rows = body.splitlines()[1:]
        assert len(rows) == 1
        assert ",Refund,-10.00,GBP," in rows[0]
