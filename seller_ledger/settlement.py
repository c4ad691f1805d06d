from decimal import Decimal
from typing import Optional

from seller_ledger.config import Settings
from seller_ledger.currency import convert, money
from seller_ledger.errors import NotFoundError, ValidationError
from seller_ledger.logging_config import logger
from seller_ledger.models import (
    Currency,
    OrderSettlementRequest,
    OrderSnapshot,
    PlatformFee,
    Transaction,
    TransactionDraft,
    TransactionType,
)
from seller_ledger.processor import TransactionProcessor
from seller_ledger.store import LedgerStore, utcnow

_ZERO = Decimal("0.00")


def _check_amounts(request: OrderSettlementRequest) -> None:
    fields: dict[str, str] = {}
    for name in ("subtotal", "shipping_cost", "taxes", "discount_amount", "total"):
        value = getattr(request, name)
        if not value.is_finite() or value < 0:
            fields[name] = "must be a finite, non-negative amount"
    for name in ("seller_payout", "platform_fee"):
        value = getattr(request, name)
        if value is not None and (not value.is_finite() or value < 0):
            fields[name] = "must be a finite, non-negative amount"
    if fields:
        raise ValidationError("Invalid order amounts", fields)

    expected = money(request.subtotal + request.shipping_cost + request.taxes - request.discount_amount)
    if money(request.total) != expected:
        raise ValidationError(
            "Order total does not add up",
            {"total": f"expected {expected} (subtotal + shipping + taxes - discount)"},
        )


def _seller_of(request: OrderSettlementRequest) -> str:
    if not request.items:
        raise ValidationError("Order has no items", {"items": "at least one item is required"})
    sellers = {item.seller_id for item in request.items}
    if len(sellers) != 1:
        raise ValidationError("Order spans several sellers", {"items": "all items must belong to one seller"})
    return sellers.pop()


class OrderSettlement:
    """Credits sellers when orders are placed and debits them when returns are refunded."""

    def __init__(self, store: LedgerStore, processor: TransactionProcessor, settings: Settings) -> None:
        self.store = store
        self.processor = processor
        self.settings = settings

    def settle(self, request: OrderSettlementRequest, processed_by: Optional[str] = "System") -> OrderSnapshot:
        """Post exactly one Sale for the order and store its financial snapshot.

        Settling an order twice returns the stored snapshot and posts nothing.
        """
        _check_amounts(request)
        seller_id = _seller_of(request)

        fee_local = money(
            request.platform_fee if request.platform_fee is not None
            else request.subtotal * self.settings.platform_fee_rate
        )
        seller_payout = money(
            request.seller_payout if request.seller_payout is not None
            else request.subtotal - fee_local
        )
        if seller_payout < 0:
            raise ValidationError("Platform fee exceeds subtotal", {"platform_fee": "fee must not exceed the subtotal"})
        fee_base, _ = convert(fee_local, request.currency, self.settings.base_currency)

        with self.processor.locks.hold(seller_id, request.currency):
            with self.store.unit() as unit:
                existing = unit.get_order(request.order_id)
                if existing is not None:
                    logger.info("order_already_settled", order_id=request.order_id)
                    return existing

                # first sale for a new seller opens its financials record
                unit.ensure_seller(seller_id)
                sale = self.processor.apply_in(unit, TransactionDraft(
                    seller_id=seller_id,
                    type=TransactionType.SALE,
                    amount=seller_payout,
                    currency=request.currency,
                    reference_id=request.order_id,
                    description=f"Sale for order {request.order_id}",
                    processed_by=processed_by,
                ))
                snapshot = OrderSnapshot(
                    order_id=request.order_id,
                    seller_id=seller_id,
                    currency=request.currency,
                    subtotal=money(request.subtotal),
                    shipping_cost=money(request.shipping_cost),
                    taxes=money(request.taxes),
                    discount_amount=money(request.discount_amount),
                    total=money(request.total),
                    platform_fee=PlatformFee(local=fee_local, base=fee_base),
                    seller_payout=seller_payout,
                    country=request.country.upper() if request.country else None,
                    sale_transaction_id=sale.id,
                    created_at=request.created_at or utcnow(),
                )
                unit.insert_order(snapshot)

        logger.info(
            "order_settled",
            order_id=request.order_id,
            seller_id=seller_id,
            currency=request.currency.value,
            seller_payout=str(seller_payout),
            platform_fee_base=str(fee_base),
        )
        return snapshot

    def record_refund(
        self,
        order_id: str,
        refund_amount: Decimal,
        currency: Currency,
        return_id: Optional[str] = None,
        processed_by: Optional[str] = None,
    ) -> Transaction:
        """Debit the order's seller for a completed return."""
        if not refund_amount.is_finite() or refund_amount <= 0:
            raise ValidationError("Invalid refund", {"refund_amount": "must be a positive amount"})

        order = self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order '{order_id}' not found")
        if currency != order.currency:
            raise ValidationError(
                "Refund currency mismatch",
                {"currency": f"order {order_id} was placed in {order.currency.value}"},
            )

        amount = money(refund_amount)
        with self.processor.locks.hold(order.seller_id, currency):
            with self.store.unit() as unit:
                already = unit.refunded_total_for_order(order_id)
                if already + amount > order.total:
                    raise ValidationError(
                        "Refund exceeds order total",
                        {"refund_amount": f"at most {order.total - already} can still be refunded"},
                    )
                description = f"Refund for return {return_id}" if return_id else f"Refund for order {order_id}"
                tx = self.processor.apply_in(unit, TransactionDraft(
                    seller_id=order.seller_id,
                    type=TransactionType.REFUND,
                    amount=-amount,
                    currency=currency,
                    reference_id=order_id,
                    description=description,
                    processed_by=processed_by,
                ))

        logger.info("refund_recorded", order_id=order_id, seller_id=order.seller_id,
                    amount=str(amount), currency=currency.value, transaction_id=tx.id)
        return tx
