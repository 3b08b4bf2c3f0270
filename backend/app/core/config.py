from functools import lru_cache
import json

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Compute Router"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"
    log_file: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    admin_api_key: str = "dev-admin-key"
    cors_origins: str = "http://localhost:3000"
    enforce_https: bool = False
    allow_insecure_localhost: bool = True
    tls_cert_file: str | None = None
    tls_key_file: str | None = None

    quote_timeout_ms: int = 5_000
    top_n: int = 3
    filter_fail_fast: bool = False
    weight_price: float = 0.60
    weight_latency: float = 0.15
    weight_reputation: float = 0.15
    weight_geography: float = 0.10

    # Deployment secret; a public salt makes wallet hashes brute-forceable.
    identity_hash_salt: str = "router-identity-v1"

    trace_upload_timeout_sec: float = 10.0
    trace_size_warning_bytes: int = 5 * 1024 * 1024
    trace_max_bytes: int = 9 * 1024 * 1024
    trace_storage_backend: str = "memory"
    trace_storage_dir: str = "./.tmp/traces"

    token_prices_usd: str = '{"RNDR": 7.5, "AKT": 3.2, "GLM": 0.45}'
    token_price_max_age_sec: int = 600
    include_hidden_costs: bool = True
    apply_spot_discount: bool = True

    seed_demo_providers: bool = False

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str] | None) -> str:
        if value is None:
            return "http://localhost:3000"
        if isinstance(value, list):
            return ",".join(str(item).strip() for item in value if str(item).strip())
        return str(value).strip()

    @field_validator("trace_storage_backend")
    @classmethod
    def validate_storage_backend(cls, value: str) -> str:
        backend = value.strip().lower()
        if backend not in {"memory", "file"}:
            raise ValueError("trace_storage_backend must be 'memory' or 'file'")
        return backend

    @model_validator(mode="after")
    def validate_trace_limits(self) -> "Settings":
        if self.trace_size_warning_bytes > self.trace_max_bytes:
            raise ValueError("trace_size_warning_bytes must not exceed trace_max_bytes")
        if self.quote_timeout_ms <= 0 or self.top_n <= 0:
            raise ValueError("quote_timeout_ms and top_n must be positive")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        value = (self.cors_origins or "").strip()
        if not value:
            return ["http://localhost:3000"]
        if value.startswith("["):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def token_prices(self) -> dict[str, float]:
        try:
            parsed = json.loads(self.token_prices_usd or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError(f"token_prices_usd is not valid JSON: {exc}") from exc
        return {str(symbol).upper(): float(price) for symbol, price in parsed.items()}

    @property
    def quote_timeout_sec(self) -> float:
        return self.quote_timeout_ms / 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
