"""
Runtime settings for the Storefront API.

Values come from the environment (a local .env file is loaded first). The
resulting Settings object is handed to each service explicitly.
"""
import logging
import os
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev-secret-key-change-me"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite:///./storefront.db"
    host: str = "0.0.0.0"
    port: int = 4000

    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_expire_minutes: int = 60 * 24

    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    image_dir: str = "./data/images"
    max_image_bytes: int = 5 * 1024 * 1024

    bcrypt_rounds: int = 12
    min_password_length: int = 6

    payment_policy: str = "threshold"
    payment_limit: Decimal = Decimal("1000")
    payment_decline_rate: float = 0.1

    default_stock: int = 100

    log_level: str = "INFO"
    seed_sample_data: bool = False
    admin_username: Optional[str] = None
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        settings = cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./storefront.db"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", 4000)),
            jwt_secret=os.getenv("JWT_SECRET", DEV_JWT_SECRET),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            token_expire_minutes=int(os.getenv("TOKEN_EXPIRE_MINUTES", 60 * 24)),
            cors_origins=_env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"),
            image_dir=os.getenv("IMAGE_DIR", "./data/images"),
            max_image_bytes=int(os.getenv("MAX_IMAGE_BYTES", 5 * 1024 * 1024)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 12)),
            min_password_length=int(os.getenv("MIN_PASSWORD_LENGTH", 6)),
            payment_policy=os.getenv("PAYMENT_POLICY", "threshold"),
            payment_limit=Decimal(os.getenv("PAYMENT_LIMIT", "1000")),
            payment_decline_rate=float(os.getenv("PAYMENT_DECLINE_RATE", 0.1)),
            default_stock=int(os.getenv("DEFAULT_STOCK", 100)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            seed_sample_data=_env_bool("SEED_SAMPLE_DATA"),
            admin_username=os.getenv("ADMIN_USERNAME") or None,
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
        )
        if settings.jwt_secret == DEV_JWT_SECRET:
            logger.warning("JWT_SECRET is not set; using the development secret")
        return settings
