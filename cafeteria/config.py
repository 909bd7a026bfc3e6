from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/cafeteria"
    log_level: str = "INFO"
    seed_menu: bool = True

    # Pricing
    tax_rate: Decimal = Decimal("0.05")

    # Checkout
    order_number_max_attempts: int = 5

    # Auth (JWT)
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    allow_admin_signup: bool = True

    # Kafka
    kafka_enabled: bool = True
    kafka_bootstrap_servers: str = "kafka:9092"

    # Observability; an empty endpoint disables tracing
    otlp_endpoint: str = "http://jaeger:4318/v1/traces"
    trace_sample_ratio: float = 1.0

    model_config = {"env_file": ".env"}


settings = Settings()
