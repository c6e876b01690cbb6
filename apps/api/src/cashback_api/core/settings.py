from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "cashback-ledger"
    database_url: str = "sqlite+aiosqlite:///./cashback.db"
    database_echo: bool = False

    # Cashback program defaults applied when a company has no program yet
    cashback_default_percent: float = Field(default=0.0, ge=0)
    cashback_default_base: Literal["subtotal", "total"] = "total"

    # Reject reversals that would claw back more than was credited on the order
    cashback_cap_cumulative_reversals: bool = True

    # Backfill sweep
    cashback_backfill_batch_size: int = 100
    cashback_backfill_company_ids: list[str] = Field(default_factory=list)

    @field_validator("cashback_backfill_company_ids", mode="before")
    @classmethod
    def _parse_company_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
