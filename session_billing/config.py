"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./session_billing.db"
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5000

    processor_backend: str = "mock"  # "mock" or "stripe"
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_api_version: str = "2024-06-20"

    default_currency: str = "usd"
    connect_country: str = "US"
    onboarding_return_url: str = "https://example.com/payouts/return"
    onboarding_refresh_url: str = "https://example.com/payouts/refresh"

    payee_minimum_minutes: int = 10  # Floor billed when the companion ends early
    caller_header: str = "X-Caller-Id"  # Set by the upstream auth gateway

    mock_latency_ms: int = 0  # Simulated processor latency
    mock_decline_rate: float = 0.0  # Share of holds the mock processor declines

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
