from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from seller_ledger.models import Currency


class Settings(BaseSettings):
    """Runtime settings, read from ``LEDGER_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./ledger.db"
    base_currency: Currency = Currency.GBP
    # only used when an order arrives without an explicit platform fee
    platform_fee_rate: Decimal = Decimal("0.10")
    default_page_size: int = Field(default=50, ge=1)
    max_page_size: int = Field(default=500, ge=1)
    log_level: str = "INFO"
    json_logs: bool = False
    seed_demo_data: bool = False

    @field_validator("platform_fee_rate")
    @classmethod
    def _rate_in_range(cls, v: Decimal) -> Decimal:
        if not Decimal("0") <= v <= Decimal("1"):
            raise ValueError("platform_fee_rate must be between 0 and 1")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
