import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    @property
    def MOMO_API_BASE_URL(self) -> str:
        return os.getenv("MOMO_API_BASE_URL", "https://sandbox.momodeveloper.mtn.com").rstrip("/")

    @property
    def MOMO_COLLECTION_USER_ID(self) -> str:
        return os.getenv("MOMO_COLLECTION_USER_ID", "")

    @property
    def MOMO_COLLECTION_API_KEY(self) -> str:
        return os.getenv("MOMO_COLLECTION_API_KEY", "")

    @property
    def MOMO_SUBSCRIPTION_KEY(self) -> str:
        return os.getenv("MOMO_SUBSCRIPTION_KEY", "")

    @property
    def MOMO_CALLBACK_SECRET(self) -> str:
        return os.getenv("MOMO_CALLBACK_SECRET", "")

    @property
    def MOMO_TARGET_ENVIRONMENT(self) -> str:
        return os.getenv("MOMO_TARGET_ENVIRONMENT", "sandbox")

    @property
    def MOMO_CURRENCY(self) -> str:
        # The MoMo sandbox only settles in EUR.
        default = "EUR" if self.MOMO_TARGET_ENVIRONMENT == "sandbox" else "GHS"
        return os.getenv("MOMO_CURRENCY", default)

    @property
    def MOMO_REQUEST_TIMEOUT_SECONDS(self) -> int:
        return self._get_int("MOMO_REQUEST_TIMEOUT_SECONDS", 30)

    @property
    def MOMO_WEBHOOK_ALLOW_UNSIGNED(self) -> bool:
        return self._get_bool("MOMO_WEBHOOK_ALLOW_UNSIGNED", False)

    @property
    def PAYMENT_TIMEOUT_MINUTES(self) -> int:
        return self._get_int("PAYMENT_TIMEOUT_MINUTES", 10)

    @property
    def RECONCILE_INTERVAL_MINUTES(self) -> int:
        return self._get_int("RECONCILE_INTERVAL_MINUTES", 15)

    @property
    def RECONCILE_ENABLED(self) -> bool:
        return self._get_bool("RECONCILE_ENABLED", True)

    @property
    def RECONCILE_STARTUP_DELAY_SECONDS(self) -> int:
        return self._get_int("RECONCILE_STARTUP_DELAY_SECONDS", 5)

    @property
    def DEFAULT_SHIPPING_AMOUNT(self) -> Decimal:
        return Decimal(os.getenv("DEFAULT_SHIPPING_AMOUNT", "10.00"))

    @property
    def WEBHOOK_RATE_LIMIT_PER_MINUTE(self) -> int:
        return self._get_int("WEBHOOK_RATE_LIMIT_PER_MINUTE", 100)

    @property
    def TELEGRAM_BOT_TOKEN(self) -> str:
        return os.getenv("TELEGRAM_BOT_TOKEN", "")


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
