from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (and an optional .env file)."""

    # Backend connection
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_MOVEMENT_RPC: Optional[str] = "apply_balance_movement"
    HTTP_TIMEOUT: float = 30.0

    # Deposits and withdrawals
    MIN_DEPOSIT: Decimal = Decimal("5.00")
    DEPOSIT_STATUS: str = "completed"
    FEE_GATE_THRESHOLD: int = 2
    WITHDRAWAL_FEE: Decimal = Decimal("25.00")
    FEE_INSTRUCTIONS: str = (
        "Further withdrawals require a flat administrative fee. "
        "Contact support to arrange payment, then confirm the fee to continue."
    )
    MAX_WRITE_RETRIES: int = 3

    # Views
    RECENT_TRANSACTIONS_LIMIT: int = 5

    # Support tickets
    TICKET_AUTO_CLOSE_HOURS: int = 48
    ATTACHMENTS_BUCKET: str = "attachments"

    # API
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
