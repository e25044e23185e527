import json
from typing import List, Literal, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


StockFailurePolicy = Literal["best_effort", "all_or_nothing"]


class Settings(BaseSettings):
    app_name: str = "Billbook Backend"
    env: str = "dev"
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8000, ge=1, le=65_535)

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # BILLING
    billing_default_page_size: int = Field(default=20, ge=1, le=500)
    billing_max_page_size: int = Field(default=200, ge=1, le=1000)

    # INVENTORY
    # best_effort: a failing line item is logged and skipped.
    # all_or_nothing: a failing line item aborts the whole bill mutation.
    stock_failure_policy: StockFailurePolicy = "best_effort"
    low_stock_default_threshold: int = Field(default=5, ge=0)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator("stock_failure_policy", mode="before")
    @classmethod
    def normalize_stock_failure_policy(cls, value: str) -> str:
        if value is None:
            return "best_effort"
        return str(value).strip().lower().replace("-", "_")

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if self.billing_default_page_size > self.billing_max_page_size:
            raise ValueError("BILLING_DEFAULT_PAGE_SIZE cannot exceed BILLING_MAX_PAGE_SIZE")

        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
