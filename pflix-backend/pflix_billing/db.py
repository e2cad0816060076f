from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    database_url: str = Field(alias="DATABASE_URL")
    app_env: str = Field(default="development", alias="APP_ENV")
    app_public_url: str = Field(default="https://pflix.com.br", alias="APP_PUBLIC_URL")

    asaas_api_key: str | None = Field(default=None, alias="ASAAS_API_KEY")
    asaas_api_url: str | None = Field(default=None, alias="ASAAS_API_URL")
    asaas_webhook_token: str | None = Field(default=None, alias="ASAAS_WEBHOOK_TOKEN")

    inter_env: str | None = Field(default=None, alias="INTER_ENV")
    inter_client_id: str | None = Field(default=None, alias="INTER_CLIENT_ID")
    inter_client_secret: str | None = Field(default=None, alias="INTER_CLIENT_SECRET")
    inter_cert_path: str | None = Field(default=None, alias="INTER_CERT_PATH")
    inter_key_path: str | None = Field(default=None, alias="INTER_KEY_PATH")
    inter_conta_corrente: str | None = Field(default=None, alias="INTER_CONTA_CORRENTE")
    inter_pix_key: str | None = Field(default=None, alias="INTER_PIX_KEY")
    inter_webhook_token: str | None = Field(default=None, alias="INTER_WEBHOOK_TOKEN")
    inter_pix_webhook_token: str | None = Field(default=None, alias="INTER_PIX_WEBHOOK_TOKEN")
    inter_boleto_webhook_token: str | None = Field(default=None, alias="INTER_BOLETO_WEBHOOK_TOKEN")

    billing_api_token: str | None = Field(default=None, alias="BILLING_API_TOKEN")

    gateway_timeout_seconds: float = Field(default=15.0, alias="GATEWAY_TIMEOUT_SECONDS")

    mailjet_api_key: str | None = Field(default=None, alias="MAILJET_API_KEY")
    mailjet_secret_key: str | None = Field(default=None, alias="MAILJET_SECRET_KEY")
    mailjet_from_email: str | None = Field(default=None, alias="MAILJET_FROM_EMAIL")
    mailjet_from_name: str = Field(default="Pflix", alias="MAILJET_FROM_NAME")

    subscription_expiry_enabled: bool = Field(default=False, alias="SUBSCRIPTION_EXPIRY_ENABLED")
    subscription_expiry_interval_minutes: int = Field(default=60, alias="SUBSCRIPTION_EXPIRY_INTERVAL_MINUTES")

    # Config do pydantic-settings (v2)
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.app_env.strip().lower() in ("production", "prod")

    @property
    def INTER_PIX_WEBHOOK_TOKEN(self) -> str | None:
        return self.inter_webhook_token or self.inter_pix_webhook_token

    @property
    def INTER_BOLETO_WEBHOOK_TOKEN(self) -> str | None:
        return self.inter_webhook_token or self.inter_boleto_webhook_token

    @property
    def ASAAS_WEBHOOK_TOKEN(self) -> str | None:
        return self.asaas_webhook_token

    @field_validator(
        "asaas_webhook_token",
        "inter_webhook_token",
        "inter_pix_webhook_token",
        "inter_boleto_webhook_token",
        "billing_api_token",
    )
    @classmethod
    def validate_webhook_token(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not value:
            return None
        if len(value) < 16:
            raise ValueError("webhook tokens must be at least 16 chars long")
        return value

    @field_validator("gateway_timeout_seconds")
    @classmethod
    def validate_gateway_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("GATEWAY_TIMEOUT_SECONDS must be positive")
        return value


settings = Settings()

# sessions open in the dependency threadpool and are used on the event loop
connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


# Dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
