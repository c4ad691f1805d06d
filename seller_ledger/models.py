from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime, date
from decimal import Decimal
from typing import Optional


class Currency(str, Enum):
    GBP = "GBP"
    USD = "USD"
    EUR = "EUR"
    JPY = "JPY"


class TransactionType(str, Enum):
    SALE = "Sale"
    PAYOUT = "Payout"
    REFUND = "Refund"
    FEE = "Fee"
    ADJUSTMENT = "Adjustment"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"


class KycStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    VERIFIED = "verified"
    ACTION_REQUIRED = "action_required"
    REJECTED = "rejected"


class PayoutStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# types that must always name a seller
SELLER_REQUIRED = frozenset({TransactionType.SALE, TransactionType.PAYOUT, TransactionType.REFUND})


def zero_map() -> dict[Currency, Decimal]:
    return {c: Decimal("0.00") for c in Currency}


# ── Ledger records ───────────────────────────────────────────────────────────

class Transaction(BaseModel):
    id: str
    seller_id: Optional[str] = None  # None for platform-only fees / adjustments
    type: TransactionType
    amount: Decimal                  # signed, in `currency`
    currency: Currency
    reference_id: Optional[str] = None
    description: str = ""
    status: TransactionStatus = TransactionStatus.COMPLETED
    processed_by: Optional[str] = None
    created_at: datetime
    reversed_at: Optional[datetime] = None
    reverses_transaction_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class TransactionDraft(BaseModel):
    """A transaction not yet applied; the processor assigns id and timestamps."""

    seller_id: Optional[str] = None
    type: TransactionType
    amount: Decimal
    currency: Currency
    reference_id: Optional[str] = None
    description: str = ""
    processed_by: Optional[str] = None
    reverses_transaction_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class SellerFinancials(BaseModel):
    seller_id: str
    balance: dict[Currency, Decimal] = Field(default_factory=zero_map)
    pending_balance: dict[Currency, Decimal] = Field(default_factory=zero_map)
    total_earnings: dict[Currency, Decimal] = Field(default_factory=zero_map)
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    payouts_enabled: bool = False


class Payout(BaseModel):
    id: str
    seller_id: str
    amount: Decimal
    currency: Currency
    status: PayoutStatus
    requested_at: datetime
    processed_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    idempotency_key: Optional[str] = None


class TaxRuleSet(BaseModel):
    version: int
    rates: dict[str, Decimal]   # country code -> rate in [0, 1], "ROW" is the fallback
    updated_by: Optional[str] = None
    created_at: datetime


# ── Order collaborator handoff ───────────────────────────────────────────────

class PlatformFee(BaseModel):
    local: Decimal   # in the order's currency
    base: Decimal    # normalised to the reporting currency


class OrderItem(BaseModel):
    product_id: str
    seller_id: str
    quantity: int = 1
    unit_price: Decimal = Decimal("0.00")


class OrderSettlementRequest(BaseModel):
    order_id: str
    currency: Currency
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0.00")
    taxes: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    total: Decimal
    items: list[OrderItem]
    seller_payout: Optional[Decimal] = None
    platform_fee: Optional[Decimal] = None   # local amount; base is derived
    country: Optional[str] = None            # shipping country, for tax reports
    created_at: Optional[datetime] = None


class OrderSnapshot(BaseModel):
    order_id: str
    seller_id: str
    currency: Currency
    subtotal: Decimal
    shipping_cost: Decimal
    taxes: Decimal
    discount_amount: Decimal
    total: Decimal
    platform_fee: PlatformFee
    seller_payout: Decimal
    country: Optional[str] = None
    sale_transaction_id: Optional[str] = None
    created_at: datetime


# ── Query / response models ──────────────────────────────────────────────────

class TransactionFilters(BaseModel):
    seller_id: Optional[str] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    currency: Optional[Currency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class Page(BaseModel):
    items: list[Transaction]
    total: int
    limit: int
    offset: int


class TypeBreakdown(BaseModel):
    count: int
    amount: dict[Currency, Decimal]


class FinancialSummary(BaseModel):
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    seller_id: Optional[str] = None
    base_currency: Currency
    total_sales_value: dict[Currency, Decimal]
    total_platform_revenue: Decimal          # in base currency
    total_taxes_collected: dict[Currency, Decimal]
    taxes_by_country: dict[str, Decimal]
    total_refunds: dict[Currency, Decimal]   # absolute Refund amounts, reversals included
    net_refunds: dict[Currency, Decimal]     # refunds less their reversals
    outstanding_balance: dict[Currency, Decimal]
    outstanding_balance_base: Decimal
    transaction_breakdown: dict[TransactionType, TypeBreakdown]
    revenue_by_day: dict[str, Decimal]
    order_count: int
