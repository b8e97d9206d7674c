"""
Application settings
Read from environment variables or a .env file
"""
import logging
from decimal import Decimal
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "hotelops"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./hotelops.db"

    # Billing
    DEFAULT_TAX_RATE: Decimal = Decimal("0.10")
    TRANSACTION_REF_LENGTH: int = 12

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def configure_logging(level: str = None) -> None:
    """Console logging for the demo runner"""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
