"""
Transaction processor: the only writer of seller balances.

Every balance-affecting operation (settlement, refunds, manual entries,
payouts, reversals) ends up in ``TransactionProcessor.apply_in`` while the
caller holds the (seller, currency) cell lock.
"""

import threading
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional

from seller_ledger.currency import money
from seller_ledger.errors import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from seller_ledger.logging_config import logger
from seller_ledger.models import (
    SELLER_REQUIRED,
    Currency,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
)
from seller_ledger.store import LedgerStore, WriteUnit, new_id, utcnow

_ZERO = Decimal("0.00")


class CellLocks:
    """Re-entrant lock per (seller, currency) balance cell."""

    def __init__(self) -> None:
        self._locks: dict[tuple[Optional[str], Currency], threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, seller_id: Optional[str], currency: Currency) -> threading.RLock:
        key = (seller_id, currency)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, seller_id: Optional[str], currency: Currency) -> Iterator[None]:
        with self.get(seller_id, currency):
            yield


def validate_draft(draft: TransactionDraft) -> None:
    """Shape checks that need no storage access. Raises ValidationError with field detail."""
    fields: dict[str, str] = {}
    if not isinstance(draft.type, TransactionType):
        fields["type"] = f"unknown transaction type {draft.type!r}"
    if not isinstance(draft.currency, Currency):
        fields["currency"] = f"unsupported currency {draft.currency!r}"
    if not isinstance(draft.amount, Decimal) or not draft.amount.is_finite():
        fields["amount"] = "amount must be a finite number"
    if fields:
        raise ValidationError("Invalid transaction", fields)

    if draft.type in SELLER_REQUIRED and not draft.seller_id:
        raise ValidationError("Seller is required", {"seller_id": f"required for {draft.type.value} transactions"})

    if draft.reverses_transaction_id is not None:
        # compensating entries carry the inverse sign of whatever they undo
        return
    if draft.type == TransactionType.SALE and draft.amount < 0:
        raise ValidationError("Invalid sale", {"amount": "sale amount must be zero or positive"})
    if draft.type == TransactionType.REFUND and draft.amount >= 0:
        raise ValidationError("Invalid refund", {"amount": "refund amount must be negative"})
    if draft.type == TransactionType.PAYOUT and draft.amount >= 0:
        raise ValidationError("Invalid payout", {"amount": "payout amount must be negative"})


def _check_replay(existing: Transaction, draft: TransactionDraft) -> None:
    """A reused idempotency key must describe the same operation."""
    mismatched = {
        name: f"does not match the transaction recorded under this idempotency key ({existing.id})"
        for name, ours, theirs in (
            ("seller_id", draft.seller_id, existing.seller_id),
            ("type", draft.type, existing.type),
            ("amount", money(draft.amount), existing.amount),
            ("currency", draft.currency, existing.currency),
        )
        if ours != theirs
    }
    if mismatched:
        raise ValidationError("Idempotency key reused with a different payload", mismatched)


class TransactionProcessor:
    def __init__(self, store: LedgerStore, locks: Optional[CellLocks] = None) -> None:
        self.store = store
        self.locks = locks or CellLocks()

    def apply(self, draft: TransactionDraft) -> Transaction:
        """Validate and apply one transaction in its own write unit."""
        validate_draft(draft)
        with self.locks.hold(draft.seller_id, draft.currency):
            with self.store.unit() as unit:
                return self.apply_in(unit, draft)

    def apply_in(self, unit: WriteUnit, draft: TransactionDraft) -> Transaction:
        """Apply inside a caller-owned unit. The caller must hold the cell lock."""
        validate_draft(draft)

        if draft.idempotency_key:
            existing = unit.find_by_idempotency_key(draft.idempotency_key)
            if existing is not None:
                _check_replay(existing, draft)
                logger.info("transaction_replayed", transaction_id=existing.id, idempotency_key=draft.idempotency_key)
                return existing

        if draft.seller_id and not unit.seller_exists(draft.seller_id):
            raise NotFoundError(f"Seller '{draft.seller_id}' not found")

        amount = money(draft.amount)
        tx = Transaction(
            id=new_id("TX"),
            seller_id=draft.seller_id,
            type=draft.type,
            amount=amount,
            currency=draft.currency,
            reference_id=draft.reference_id,
            description=draft.description,
            status=TransactionStatus.COMPLETED,
            processed_by=draft.processed_by,
            created_at=utcnow(),
            reverses_transaction_id=draft.reverses_transaction_id,
            idempotency_key=draft.idempotency_key,
        )

        if tx.seller_id is None:
            # platform-only event, no balance cell
            unit.append(tx)
            logger.info("transaction_applied", transaction_id=tx.id, type=tx.type.value,
                        amount=str(amount), currency=tx.currency.value)
            return tx

        current = unit.get_balance(tx.seller_id, tx.currency)
        compensating = tx.reverses_transaction_id is not None

        if tx.type == TransactionType.PAYOUT and not compensating:
            if current <= 0:
                raise InsufficientBalanceError(
                    f"Seller '{tx.seller_id}' has no available {tx.currency.value} balance"
                )
            if -amount != current:
                raise ConcurrencyConflictError(
                    f"Payout of {-amount} does not match the current balance {current} {tx.currency.value}"
                )
            new_balance = _ZERO
        else:
            new_balance = current + amount

        unit.append(tx)
        unit.compare_and_set_balance(tx.seller_id, tx.currency, expected=current, new=new_balance)
        if tx.type == TransactionType.SALE and not compensating:
            unit.credit_earnings(tx.seller_id, tx.currency, amount)

        logger.info(
            "transaction_applied",
            transaction_id=tx.id,
            seller_id=tx.seller_id,
            type=tx.type.value,
            amount=str(amount),
            currency=tx.currency.value,
            balance=str(new_balance),
        )
        return tx
