import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from seller_ledger import tables as t
from seller_ledger.errors import AlreadyReversedError, ConcurrencyConflictError, StorageError
from seller_ledger.logging_config import logger
from seller_ledger.models import (
    Currency,
    KycStatus,
    OrderSnapshot,
    Page,
    Payout,
    PlatformFee,
    SellerFinancials,
    TaxRuleSet,
    Transaction,
    TransactionFilters,
    TransactionStatus,
    TransactionType,
    zero_map,
)

_ZERO = Decimal("0.00")


def utcnow() -> datetime:
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16].upper()}"


def day_bounds(start: Optional[date], end: Optional[date]) -> tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive date range → half-open datetime range."""
    lo = datetime.combine(start, time.min) if start else None
    hi = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return lo, hi


def _order_from_row(row) -> OrderSnapshot:
    return OrderSnapshot(
        order_id=row["order_id"],
        seller_id=row["seller_id"],
        currency=row["currency"],
        subtotal=row["subtotal"],
        shipping_cost=row["shipping_cost"],
        taxes=row["taxes"],
        discount_amount=row["discount_amount"],
        total=row["total"],
        platform_fee=PlatformFee(local=row["platform_fee_local"], base=row["platform_fee_base"]),
        seller_payout=row["seller_payout"],
        country=row["country"],
        sale_transaction_id=row["sale_transaction_id"],
        created_at=row["created_at"],
    )


class _Reader:
    """Queries shared by the store (own connection per call) and write units (unit's connection)."""

    def _rows(self, stmt) -> list:
        raise NotImplementedError

    def _scalar(self, stmt):
        rows = self._rows(stmt)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    # ── transactions ──────────────────────────────────────────────────────────

    def get(self, transaction_id: str) -> Optional[Transaction]:
        rows = self._rows(sa.select(t.transactions).where(t.transactions.c.id == transaction_id))
        return Transaction(**rows[0]) if rows else None

    def find_by_idempotency_key(self, key: str) -> Optional[Transaction]:
        rows = self._rows(sa.select(t.transactions).where(t.transactions.c.idempotency_key == key))
        return Transaction(**rows[0]) if rows else None

    def find_reversal_of(self, transaction_id: str) -> Optional[Transaction]:
        rows = self._rows(
            sa.select(t.transactions).where(t.transactions.c.reverses_transaction_id == transaction_id)
        )
        return Transaction(**rows[0]) if rows else None

    def _filtered(self, stmt, filters: TransactionFilters):
        c = t.transactions.c
        if filters.seller_id is not None:
            stmt = stmt.where(c.seller_id == filters.seller_id)
        if filters.type is not None:
            stmt = stmt.where(c.type == filters.type.value)
        if filters.status is not None:
            stmt = stmt.where(c.status == filters.status.value)
        if filters.currency is not None:
            stmt = stmt.where(c.currency == filters.currency.value)
        lo, hi = day_bounds(filters.start_date, filters.end_date)
        if lo is not None:
            stmt = stmt.where(c.created_at >= lo)
        if hi is not None:
            stmt = stmt.where(c.created_at < hi)
        return stmt

    def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Page:
        filters = filters or TransactionFilters()
        c = t.transactions.c
        total = self._scalar(self._filtered(sa.select(sa.func.count()).select_from(t.transactions), filters))
        stmt = self._filtered(sa.select(t.transactions), filters).order_by(c.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        items = [Transaction(**r) for r in self._rows(stmt)]
        return Page(items=items, total=total or 0, limit=limit if limit is not None else len(items), offset=offset)

    def list_by_seller(
        self,
        seller_id: str,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Page:
        filters = (filters or TransactionFilters()).model_copy(update={"seller_id": seller_id})
        return self.list_transactions(filters, limit, offset)

    def sum_for_cell(self, seller_id: str, currency: Currency) -> Decimal:
        """Sum of every transaction amount for one (seller, currency) pair."""
        c = t.transactions.c
        rows = self._rows(
            sa.select(c.amount).where(c.seller_id == seller_id, c.currency == currency.value)
        )
        return sum((r["amount"] for r in rows), _ZERO)

    def refunded_total_for_order(self, order_id: str) -> Decimal:
        """Net amount refunded against an order; reversed refunds cancel out through their compensations."""
        c = t.transactions.c
        rows = self._rows(
            sa.select(c.amount).where(c.type == TransactionType.REFUND.value, c.reference_id == order_id)
        )
        return -sum((r["amount"] for r in rows), _ZERO)

    # ── balances / seller directory ───────────────────────────────────────────

    def get_balance(self, seller_id: str, currency: Currency) -> Decimal:
        c = t.balances.c
        value = self._scalar(
            sa.select(c.available).where(c.seller_id == seller_id, c.currency == currency.value)
        )
        return value if value is not None else _ZERO

    def seller_exists(self, seller_id: str) -> bool:
        c = t.seller_financials.c
        return self._scalar(sa.select(c.seller_id).where(c.seller_id == seller_id)) is not None

    def get_financials(self, seller_id: str) -> Optional[SellerFinancials]:
        rows = self._rows(sa.select(t.seller_financials).where(t.seller_financials.c.seller_id == seller_id))
        if not rows:
            return None
        fin = SellerFinancials(
            seller_id=seller_id,
            kyc_status=rows[0]["kyc_status"],
            payouts_enabled=rows[0]["payouts_enabled"],
        )
        for b in self._rows(sa.select(t.balances).where(t.balances.c.seller_id == seller_id)):
            cur = Currency(b["currency"])
            fin.balance[cur] = b["available"]
            fin.pending_balance[cur] = b["pending"]
            fin.total_earnings[cur] = b["total_earnings"]
        return fin

    def list_seller_ids(self) -> list[str]:
        return [r["seller_id"] for r in self._rows(sa.select(t.seller_financials.c.seller_id))]

    def balance_totals(self, seller_id: Optional[str] = None) -> dict[Currency, Decimal]:
        totals = zero_map()
        stmt = sa.select(t.balances.c.currency, t.balances.c.available)
        if seller_id is not None:
            stmt = stmt.where(t.balances.c.seller_id == seller_id)
        for r in self._rows(stmt):
            totals[Currency(r["currency"])] += r["available"]
        return totals

    # ── payouts ───────────────────────────────────────────────────────────────

    def get_payout(self, payout_id: str) -> Optional[Payout]:
        rows = self._rows(sa.select(t.payouts).where(t.payouts.c.id == payout_id))
        return Payout(**rows[0]) if rows else None

    def find_payout_by_idempotency_key(self, key: str) -> Optional[Payout]:
        rows = self._rows(sa.select(t.payouts).where(t.payouts.c.idempotency_key == key))
        return Payout(**rows[0]) if rows else None

    def list_payouts(self, seller_id: str) -> list[Payout]:
        c = t.payouts.c
        rows = self._rows(sa.select(t.payouts).where(c.seller_id == seller_id).order_by(c.requested_at.desc()))
        return [Payout(**r) for r in rows]

    # ── orders ────────────────────────────────────────────────────────────────

    def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        rows = self._rows(sa.select(t.orders).where(t.orders.c.order_id == order_id))
        return _order_from_row(rows[0]) if rows else None

    def list_orders(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        seller_id: Optional[str] = None,
    ) -> list[OrderSnapshot]:
        c = t.orders.c
        stmt = sa.select(t.orders)
        lo, hi = day_bounds(start_date, end_date)
        if lo is not None:
            stmt = stmt.where(c.created_at >= lo)
        if hi is not None:
            stmt = stmt.where(c.created_at < hi)
        if seller_id is not None:
            stmt = stmt.where(c.seller_id == seller_id)
        return [_order_from_row(r) for r in self._rows(stmt.order_by(c.created_at))]

    # ── tax rules ─────────────────────────────────────────────────────────────

    def latest_tax_rule_set(self) -> Optional[TaxRuleSet]:
        c = t.tax_rule_sets.c
        rows = self._rows(sa.select(t.tax_rule_sets).order_by(c.version.desc()).limit(1))
        if not rows:
            return None
        row = rows[0]
        return TaxRuleSet(
            version=row["version"],
            rates={k: Decimal(v) for k, v in row["rates"].items()},
            updated_by=row["updated_by"],
            created_at=row["created_at"],
        )


class WriteUnit(_Reader):
    """One database transaction. Everything written through a unit commits or rolls back together.

    Balance cells (``set_balance``, ``compare_and_set_balance``, ``credit_earnings``)
    are written only by the transaction processor.
    """

    def __init__(self, conn: sa.Connection) -> None:
        self.conn = conn

    def _rows(self, stmt) -> list:
        return self.conn.execute(stmt).mappings().all()

    def append(self, tx: Transaction) -> str:
        try:
            self.conn.execute(t.transactions.insert().values(**tx.model_dump(mode="python")))
        except IntegrityError as exc:
            if tx.reverses_transaction_id is not None:
                raise AlreadyReversedError(
                    f"Transaction '{tx.reverses_transaction_id}' has already been reversed"
                ) from exc
            raise ConcurrencyConflictError(f"Duplicate transaction '{tx.id}'") from exc
        return tx.id

    def mark_reversed(self, transaction_id: str, at: datetime) -> None:
        self.conn.execute(
            t.transactions.update()
            .where(t.transactions.c.id == transaction_id)
            .values(status=TransactionStatus.REVERSED.value, reversed_at=at)
        )

    def ensure_seller(self, seller_id: str) -> None:
        """Create the financials record with zero balances if the seller is new."""
        if self.seller_exists(seller_id):
            return
        self.conn.execute(
            t.seller_financials.insert().values(
                seller_id=seller_id,
                kyc_status=KycStatus.NOT_STARTED.value,
                payouts_enabled=False,
                created_at=utcnow(),
            )
        )
        self.conn.execute(
            t.balances.insert(),
            [
                {"seller_id": seller_id, "currency": cur.value, "available": _ZERO, "pending": _ZERO, "total_earnings": _ZERO}
                for cur in Currency
            ],
        )

    def upsert_seller(self, seller_id: str, kyc_status: KycStatus, payouts_enabled: bool) -> None:
        self.ensure_seller(seller_id)
        self.conn.execute(
            t.seller_financials.update()
            .where(t.seller_financials.c.seller_id == seller_id)
            .values(kyc_status=kyc_status.value, payouts_enabled=payouts_enabled)
        )

    def set_balance(self, seller_id: str, currency: Currency, amount: Decimal) -> None:
        c = t.balances.c
        self.conn.execute(
            t.balances.update().where(c.seller_id == seller_id, c.currency == currency.value).values(available=amount)
        )

    def compare_and_set_balance(self, seller_id: str, currency: Currency, expected: Decimal, new: Decimal) -> None:
        c = t.balances.c
        result = self.conn.execute(
            t.balances.update()
            .where(c.seller_id == seller_id, c.currency == currency.value, c.available == expected)
            .values(available=new)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"Balance for seller '{seller_id}' in {currency.value} changed during the write"
            )

    def credit_earnings(self, seller_id: str, currency: Currency, amount: Decimal) -> None:
        c = t.balances.c
        current = self._scalar(
            sa.select(c.total_earnings).where(c.seller_id == seller_id, c.currency == currency.value)
        )
        self.conn.execute(
            t.balances.update()
            .where(c.seller_id == seller_id, c.currency == currency.value)
            .values(total_earnings=(current or _ZERO) + amount)
        )

    def insert_payout(self, payout: Payout) -> None:
        self.conn.execute(t.payouts.insert().values(**payout.model_dump(mode="python")))

    def update_payout(self, payout: Payout) -> None:
        values = payout.model_dump(mode="python", exclude={"id"})
        self.conn.execute(t.payouts.update().where(t.payouts.c.id == payout.id).values(**values))

    def insert_order(self, order: OrderSnapshot) -> None:
        self.conn.execute(
            t.orders.insert().values(
                order_id=order.order_id,
                seller_id=order.seller_id,
                currency=order.currency.value,
                subtotal=order.subtotal,
                shipping_cost=order.shipping_cost,
                taxes=order.taxes,
                discount_amount=order.discount_amount,
                total=order.total,
                platform_fee_local=order.platform_fee.local,
                platform_fee_base=order.platform_fee.base,
                seller_payout=order.seller_payout,
                country=order.country,
                sale_transaction_id=order.sale_transaction_id,
                created_at=order.created_at,
            )
        )

    def insert_tax_rule_set(self, rule_set: TaxRuleSet) -> None:
        self.conn.execute(
            t.tax_rule_sets.insert().values(
                version=rule_set.version,
                rates={k: str(v) for k, v in rule_set.rates.items()},
                updated_by=rule_set.updated_by,
                created_at=rule_set.created_at,
            )
        )


class LedgerStore(_Reader):
    """Append-only transaction log plus the balance snapshot, persisted with SQLAlchemy."""

    def __init__(self, database_url: str) -> None:
        kwargs: dict = {}
        # in-memory SQLite lives on one shared connection
        self._shared_connection = database_url in ("sqlite://", "sqlite:///:memory:")
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if self._shared_connection:
                kwargs["poolclass"] = StaticPool
        self.engine = sa.create_engine(database_url, **kwargs)
        # write units are serialised; SQLite allows a single writer anyway
        self._write_lock = threading.RLock()
        t.metadata.create_all(self.engine)

    def _rows(self, stmt) -> list:
        try:
            if self._shared_connection:
                # returning the shared connection resets it, which must not
                # happen in the middle of another thread's write unit
                with self._write_lock, self.engine.connect() as conn:
                    return conn.execute(stmt).mappings().all()
            with self.engine.connect() as conn:
                return conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            logger.exception("storage_read_failed")
            raise StorageError("Ledger storage is unavailable") from exc

    @contextmanager
    def unit(self) -> Iterator[WriteUnit]:
        with self._write_lock:
            try:
                with self.engine.begin() as conn:
                    yield WriteUnit(conn)
            except SQLAlchemyError as exc:
                logger.exception("storage_write_failed")
                raise StorageError("Ledger storage failure; nothing was written") from exc

    def clear(self) -> None:
        with self.unit() as u:
            for table in reversed(t.metadata.sorted_tables):
                u.conn.execute(table.delete())

    def dispose(self) -> None:
        self.engine.dispose()
