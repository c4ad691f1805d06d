from typing import Optional

from seller_ledger.errors import (
    ForbiddenError,
    InsufficientBalanceError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from seller_ledger.logging_config import logger
from seller_ledger.models import (
    Currency,
    KycStatus,
    Payout,
    PayoutStatus,
    TransactionDraft,
    TransactionType,
)
from seller_ledger.processor import TransactionProcessor
from seller_ledger.store import LedgerStore, new_id, utcnow


def _check_replay(existing: Payout, seller_id: str, currency: Currency) -> None:
    mismatched = {
        name: f"does not match payout {existing.id} recorded under this idempotency key"
        for name, ours, theirs in (
            ("seller_id", seller_id, existing.seller_id),
            ("currency", currency, existing.currency),
        )
        if ours != theirs
    }
    if mismatched:
        raise ValidationError("Idempotency key reused with a different payload", mismatched)


class PayoutEngine:
    """Drains a seller's available balance in one currency into a Payout record.

    The (seller, currency) cell lock is held for the whole request, so sales,
    refunds and manual entries for the same cell wait until the drain has
    committed or failed.
    """

    def __init__(self, store: LedgerStore, processor: TransactionProcessor) -> None:
        self.store = store
        self.processor = processor

    def request(
        self,
        seller_id: str,
        currency: Currency,
        processed_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Payout:
        with self.processor.locks.hold(seller_id, currency):
            if idempotency_key:
                existing = self.store.find_payout_by_idempotency_key(idempotency_key)
                if existing is not None:
                    _check_replay(existing, seller_id, currency)
                    logger.info("payout_replayed", payout_id=existing.id, idempotency_key=idempotency_key)
                    return existing

            financials = self.store.get_financials(seller_id)
            if financials is None:
                raise NotFoundError(f"Seller '{seller_id}' not found")
            if not financials.payouts_enabled:
                raise ForbiddenError(f"Payouts are not enabled for seller '{seller_id}'")
            if financials.kyc_status != KycStatus.VERIFIED:
                raise ForbiddenError(
                    f"Seller '{seller_id}' is not verified (KYC status: {financials.kyc_status.value})"
                )

            balance = financials.balance[currency]
            if balance <= 0:
                raise InsufficientBalanceError(
                    f"Seller '{seller_id}' has no available {currency.value} balance ({balance})"
                )

            payout = Payout(
                id=new_id("PO"),
                seller_id=seller_id,
                amount=balance,
                currency=currency,
                status=PayoutStatus.PROCESSING,
                requested_at=utcnow(),
                idempotency_key=idempotency_key,
            )
            with self.store.unit() as unit:
                unit.insert_payout(payout)

            try:
                with self.store.unit() as unit:
                    tx = self.processor.apply_in(unit, TransactionDraft(
                        seller_id=seller_id,
                        type=TransactionType.PAYOUT,
                        amount=-balance,
                        currency=currency,
                        reference_id=f"PAYOUT-{payout.id}",
                        description="Payout to seller",
                        processed_by=processed_by,
                    ))
                    completed = payout.model_copy(update={
                        "status": PayoutStatus.COMPLETED,
                        "processed_at": utcnow(),
                        "transaction_id": tx.id,
                    })
                    unit.update_payout(completed)
            except Exception as exc:
                reason = exc.message if isinstance(exc, LedgerError) else f"{type(exc).__name__}: {exc}"
                failed = payout.model_copy(update={
                    "status": PayoutStatus.FAILED,
                    "processed_at": utcnow(),
                    "failure_reason": reason,
                })
                with self.store.unit() as unit:
                    unit.update_payout(failed)
                logger.warning("payout_failed", payout_id=payout.id, seller_id=seller_id,
                               currency=currency.value, reason=reason)
                raise

        logger.info("payout_completed", payout_id=completed.id, seller_id=seller_id,
                    amount=str(balance), currency=currency.value, transaction_id=tx.id)
        return completed

    def list_for_seller(self, seller_id: str) -> list[Payout]:
        if not self.store.seller_exists(seller_id):
            raise NotFoundError(f"Seller '{seller_id}' not found")
        return self.store.list_payouts(seller_id)
