import threading
from decimal import Decimal, InvalidOperation
from typing import Optional

from seller_ledger.currency import money
from seller_ledger.errors import ValidationError
from seller_ledger.logging_config import logger
from seller_ledger.models import TaxRuleSet
from seller_ledger.store import LedgerStore, utcnow

FALLBACK = "ROW"  # rest of world

DEFAULT_TAX_RATES: dict[str, Decimal] = {
    "GB": Decimal("0.20"),
    "US": Decimal("0.08"),
    "EU": Decimal("0.21"),
    "CA": Decimal("0.13"),
    "AU": Decimal("0.10"),
    FALLBACK: Decimal("0.00"),
}


def _parse_rates(new_rates: dict) -> dict[str, Decimal]:
    """Validate the whole table before anything is committed."""
    if not isinstance(new_rates, dict) or not new_rates:
        raise ValidationError("Invalid tax rates format", {"rates": "expected a non-empty mapping"})
    parsed: dict[str, Decimal] = {}
    fields: dict[str, str] = {}
    for country, rate in new_rates.items():
        code = str(country).strip().upper()
        if not code.isalpha():
            fields[str(country)] = "country code must be alphabetic"
            continue
        try:
            if isinstance(rate, bool):
                raise TypeError(rate)
            value = Decimal(str(rate))
        except (InvalidOperation, TypeError, ValueError):
            fields[code] = "rate must be a number between 0 and 1"
            continue
        if not value.is_finite() or not Decimal("0") <= value <= Decimal("1"):
            fields[code] = "rate must be a number between 0 and 1"
            continue
        parsed[code] = value
    if fields:
        raise ValidationError("Invalid tax rates", fields)
    return parsed


class TaxCalculator:
    """Country → tax rate lookup backed by versioned rule sets in the ledger store."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._current: Optional[TaxRuleSet] = None

    def load(self) -> TaxRuleSet:
        """Pick up the latest persisted rule set, seeding the defaults as version 1."""
        with self._lock:
            with self.store.unit() as unit:
                rule_set = unit.latest_tax_rule_set()
                if rule_set is None:
                    rule_set = TaxRuleSet(version=1, rates=dict(DEFAULT_TAX_RATES),
                                          updated_by="System", created_at=utcnow())
                    unit.insert_tax_rule_set(rule_set)
            self._current = rule_set
        logger.info("tax_rates_loaded", version=rule_set.version)
        return rule_set

    @property
    def current(self) -> TaxRuleSet:
        if self._current is None:
            return self.load()
        return self._current

    def rates(self) -> dict[str, Decimal]:
        return dict(self.current.rates)

    def rate(self, country_code: str) -> Decimal:
        table = self.current.rates
        return table.get(country_code.strip().upper(), table[FALLBACK])

    def tax_for(self, amount: Decimal, country_code: str) -> Decimal:
        return money(amount * self.rate(country_code))

    def set_rates(self, new_rates: dict, updated_by: Optional[str] = None) -> TaxRuleSet:
        """Merge new rates over the current table. Any invalid entry rejects the update."""
        parsed = _parse_rates(new_rates)
        with self._lock:
            previous = self._current or self.store.latest_tax_rule_set()
            base = previous.rates if previous else DEFAULT_TAX_RATES
            rule_set = TaxRuleSet(
                version=(previous.version + 1) if previous else 1,
                rates={**base, **parsed},
                updated_by=updated_by,
                created_at=utcnow(),
            )
            with self.store.unit() as unit:
                unit.insert_tax_rule_set(rule_set)
            self._current = rule_set
        logger.info("tax_rates_updated", version=rule_set.version, updated_by=updated_by,
                    rates={k: str(v) for k, v in parsed.items()})
        return rule_set
