from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    # Configuración de la aplicación
    APP_NAME: str = "Diso Checkout API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Configuración de la base de datos
    DATABASE_URL: str = "sqlite:///./diso.db"
    # Configuración CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["*"]
    CORS_HEADERS: List[str] = ["*"]

    # Deberías cambiar esto
    SECRET_KEY: str = "change-me-7d1f0c2b9a4e4f3c8b6a5d2e1f0a9b8c"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080

    # Paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CALLBACK_URL: str = "http://localhost:5000/payment-success"
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_REFERENCE_TTL_MINUTES: int = 30
    PAYMENT_REACTIVATION_COOLDOWN_SECONDS: int = 30

    # Checkout
    CHECKOUT_SESSION_TTL_MINUTES: int = 120
    CURRENCY: str = "NGN"
    ORDER_MIN_AMOUNT: int = 100
    ORDER_MAX_AMOUNT: int = 10_000_000
    DEFAULT_PHONE_REGION: str = "NG"

    FRONTEND_URL: str = "http://localhost:5000"

    # Referidos
    REFERRAL_BASE_URL: str = "http://localhost:5000/auth?ref="
    HASHIDS_SALT: str = "diso-referral-salt"
    HASHIDS_MIN_LENGTH: int = 8

    # Clave Fernet para los datos de pago de los retiros
    ENCRYPTION_KEY: str | None = None

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()
