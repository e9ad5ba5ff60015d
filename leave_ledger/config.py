from decimal import Decimal
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class LeaveCreditRules(BaseModel):
    """Policy constants for the leave credit ledger."""

    manager_roles: list[str] = ["Super Admin", "Admin", "Team Lead", "HR"]
    manager_monthly_rate: Decimal = Decimal("1.50")
    default_monthly_rate: Decimal = Decimal("1.25")
    role_rates: dict[str, Decimal] = {}
    probation_months: int = 6
    max_carryover_credits: Decimal = Decimal("4")
    carryover_usable_until_month: int = 3
    carryover_usable_until_day: int = 31
    credit_leave_types: list[str] = ["VL", "SL", "BL"]
    advance_notice_leave_types: list[str] = ["VL", "BL"]
    advance_notice_days: int = 14
    absence_window_days: int = 30
    sick_leave_lookback_days: int = 21
    sick_leave_lookahead_months: int = 1

    def monthly_rate(self, role: str | None) -> Decimal:
        """Return the monthly accrual rate for a role."""
        if role is not None and role in self.role_rates:
            return self.role_rates[role]
        if role in self.manager_roles:
            return self.manager_monthly_rate
        return self.default_monthly_rate


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Leave Ledger"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "postgresql+asyncpg://leave_ledger:leave_ledger@db:5432/leave_ledger"
    auto_create_tables: bool = False
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:8000"]
    worker_interval_seconds: int = 86400
    leave_credits: LeaveCreditRules = LeaveCreditRules()


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_rules() -> LeaveCreditRules:
    """Return the leave credit policy constants from settings."""
    return get_settings().leave_credits
