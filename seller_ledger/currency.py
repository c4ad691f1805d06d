from decimal import Decimal, ROUND_HALF_UP
from seller_ledger.models import Currency

TWO_DP = Decimal("0.01")

# Fixed reporting rates, 1 unit of FROM → X units of TO.
# Orders are normalised once at settlement time; no spot conversion.
_RATES: dict[tuple[str, str], Decimal] = {
    ("GBP", "GBP"): Decimal("1"),
    ("GBP", "USD"): Decimal("1.27"),
    ("GBP", "EUR"): Decimal("1.17"),
    ("GBP", "JPY"): Decimal("188.50"),
    ("USD", "GBP"): Decimal("0.79"),
    ("USD", "USD"): Decimal("1"),
    ("USD", "EUR"): Decimal("0.92"),
    ("USD", "JPY"): Decimal("148.40"),
    ("EUR", "GBP"): Decimal("0.855"),
    ("EUR", "USD"): Decimal("1.09"),
    ("EUR", "EUR"): Decimal("1"),
    ("EUR", "JPY"): Decimal("161.20"),
    ("JPY", "GBP"): Decimal("0.0053"),
    ("JPY", "USD"): Decimal("0.0067"),
    ("JPY", "EUR"): Decimal("0.0062"),
    ("JPY", "JPY"): Decimal("1"),
}


def money(amount) -> Decimal:
    """Quantise to 2 dp; every amount stored or compared goes through here."""
    return Decimal(amount).quantize(TWO_DP, rounding=ROUND_HALF_UP)


def get_rate(from_currency: Currency, to_currency: Currency) -> Decimal:
    key = (from_currency.value, to_currency.value)
    rate = _RATES.get(key)
    if rate is None:
        raise ValueError(f"No exchange rate for {from_currency} → {to_currency}")
    return rate


def convert(amount: Decimal, from_currency: Currency, to_currency: Currency) -> tuple[Decimal, Decimal]:
    """Return (converted_amount, rate). Amount is rounded to 2 dp."""
    rate = get_rate(from_currency, to_currency)
    return money(amount * rate), rate
