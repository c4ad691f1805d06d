from decimal import Decimal

import sqlalchemy as sa


class Money(sa.types.TypeDecorator):
    """Decimal stored as its canonical 2 dp text, so SQLite never rounds through float."""

    impl = sa.String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = Decimal(value).quantize(Decimal("0.01"))
        # "-0.00" and "0.00" must compare equal in compare-and-set
        if amount == 0:
            amount = Decimal("0.00")
        return str(amount)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


metadata = sa.MetaData()

transactions = sa.Table(
    "transactions",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("seller_id", sa.String(64), nullable=True, index=True),
    sa.Column("type", sa.String(16), nullable=False),
    sa.Column("amount", Money, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("reference_id", sa.String(128), nullable=True),
    sa.Column("description", sa.Text, nullable=False, default=""),
    sa.Column("status", sa.String(16), nullable=False),
    sa.Column("processed_by", sa.String(128), nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False, index=True),
    sa.Column("reversed_at", sa.DateTime, nullable=True),
    # unique: a transaction can be compensated at most once
    sa.Column("reverses_transaction_id", sa.String(64), nullable=True, unique=True),
    sa.Column("idempotency_key", sa.String(128), nullable=True, unique=True),
)

seller_financials = sa.Table(
    "seller_financials",
    metadata,
    sa.Column("seller_id", sa.String(64), primary_key=True),
    sa.Column("kyc_status", sa.String(32), nullable=False),
    sa.Column("payouts_enabled", sa.Boolean, nullable=False, default=False),
    sa.Column("created_at", sa.DateTime, nullable=False),
)

balances = sa.Table(
    "balances",
    metadata,
    sa.Column("seller_id", sa.String(64), primary_key=True),
    sa.Column("currency", sa.String(3), primary_key=True),
    sa.Column("available", Money, nullable=False),
    sa.Column("pending", Money, nullable=False),
    sa.Column("total_earnings", Money, nullable=False),
)

payouts = sa.Table(
    "payouts",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("seller_id", sa.String(64), nullable=False, index=True),
    sa.Column("amount", Money, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("status", sa.String(16), nullable=False),
    sa.Column("requested_at", sa.DateTime, nullable=False),
    sa.Column("processed_at", sa.DateTime, nullable=True),
    sa.Column("transaction_id", sa.String(64), nullable=True),
    sa.Column("failure_reason", sa.Text, nullable=True),
    sa.Column("idempotency_key", sa.String(128), nullable=True, unique=True),
)

orders = sa.Table(
    "orders",
    metadata,
    sa.Column("order_id", sa.String(64), primary_key=True),
    sa.Column("seller_id", sa.String(64), nullable=False, index=True),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("subtotal", Money, nullable=False),
    sa.Column("shipping_cost", Money, nullable=False),
    sa.Column("taxes", Money, nullable=False),
    sa.Column("discount_amount", Money, nullable=False),
    sa.Column("total", Money, nullable=False),
    sa.Column("platform_fee_local", Money, nullable=False),
    sa.Column("platform_fee_base", Money, nullable=False),
    sa.Column("seller_payout", Money, nullable=False),
    sa.Column("country", sa.String(8), nullable=True),
    sa.Column("sale_transaction_id", sa.String(64), nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False, index=True),
)

tax_rule_sets = sa.Table(
    "tax_rule_sets",
    metadata,
    sa.Column("version", sa.Integer, primary_key=True),
    sa.Column("rates", sa.JSON, nullable=False),   # {"GB": "0.20", ...}
    sa.Column("updated_by", sa.String(128), nullable=True),
    sa.Column("created_at", sa.DateTime, nullable=False),
)
