from typing import Optional

from seller_ledger.errors import AlreadyReversedError, ForbiddenError, NotFoundError
from seller_ledger.logging_config import logger
from seller_ledger.models import Transaction, TransactionDraft, TransactionType
from seller_ledger.processor import TransactionProcessor
from seller_ledger.store import LedgerStore, utcnow


class ReversalHandler:
    def __init__(self, store: LedgerStore, processor: TransactionProcessor) -> None:
        self.store = store
        self.processor = processor

    def reverse(self, transaction_id: str, processed_by: Optional[str] = None) -> Transaction:
        """Post the inverse of a prior transaction and mark the original reversed.

        Sales are corrected with refunds, never reversed. A transaction can be
        reversed once, and a compensating entry cannot itself be reversed.
        """
        original = self.store.get(transaction_id)
        if original is None:
            raise NotFoundError(f"Transaction '{transaction_id}' not found")
        if original.type == TransactionType.SALE:
            raise ForbiddenError("Sales cannot be reversed; record a refund instead")
        if original.reverses_transaction_id is not None:
            raise ForbiddenError(f"Transaction '{transaction_id}' is itself a reversal")

        with self.processor.locks.hold(original.seller_id, original.currency):
            with self.store.unit() as unit:
                if unit.find_reversal_of(transaction_id) is not None:
                    raise AlreadyReversedError(f"Transaction '{transaction_id}' has already been reversed")
                compensation = self.processor.apply_in(unit, TransactionDraft(
                    seller_id=original.seller_id,
                    type=original.type,
                    amount=-original.amount,
                    currency=original.currency,
                    reference_id=original.reference_id,
                    description=f"Reversal of {original.id}",
                    processed_by=processed_by,
                    reverses_transaction_id=original.id,
                ))
                unit.mark_reversed(original.id, compensation.created_at)

        logger.info("transaction_reversed", transaction_id=original.id, reversal_id=compensation.id,
                    seller_id=original.seller_id, amount=str(compensation.amount),
                    currency=original.currency.value)
        return compensation
