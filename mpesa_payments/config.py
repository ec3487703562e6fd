"""Application settings loaded from the environment (or a .env file)."""
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"


class MpesaConfig(BaseModel):
    """Daraja credentials handed to the gateway client at construction time."""

    model_config = ConfigDict(frozen=True)

    environment: str = "production"
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None
    shortcode: Optional[str] = None
    passkey: Optional[str] = None
    callback_url: str
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        if self.environment == "sandbox":
            return SANDBOX_BASE_URL
        return PRODUCTION_BASE_URL


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./mpesa_payments.db")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console or json")
    public_base_url: str = Field(default="http://localhost:8000")
    http_timeout_seconds: float = Field(default=30.0)

    # M-Pesa (Daraja)
    mpesa_environment: str = Field(default="production")
    mpesa_consumer_key: Optional[str] = None
    mpesa_consumer_secret: Optional[str] = None
    mpesa_shortcode: Optional[str] = None
    mpesa_passkey: Optional[str] = None
    mpesa_callback_url: Optional[str] = None

    # Receipts
    resend_api_key: Optional[str] = None
    receipt_from_address: str = Field(default="Ouma's Delicacy <receipts@oumasdelicacy.com>")
    business_name: str = Field(default="Ouma's Delicacy")
    business_address: str = Field(default="Nairobi, Kenya")
    business_phone: str = Field(default="+254700000000")
    business_email: str = Field(default="receipts@oumasdelicacy.com")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("mpesa_environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v.lower() not in ("sandbox", "production"):
            raise ValueError("mpesa_environment must be 'sandbox' or 'production'")
        return v.lower()

    @property
    def callback_url(self) -> str:
        if self.mpesa_callback_url:
            return self.mpesa_callback_url
        return f"{self.public_base_url.rstrip('/')}/api/v1/mpesa/callback"

    def mpesa_config(self) -> MpesaConfig:
        return MpesaConfig(
            environment=self.mpesa_environment,
            consumer_key=self.mpesa_consumer_key,
            consumer_secret=self.mpesa_consumer_secret,
            shortcode=self.mpesa_shortcode,
            passkey=self.mpesa_passkey,
            callback_url=self.callback_url,
            timeout=self.http_timeout_seconds,
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance; tests override the FastAPI dependency instead."""
    return Settings()
