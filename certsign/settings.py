import os
from dataclasses import dataclass, field
from typing import Optional

_TRUTHY = ("1", "true", "yes", "on")


def _positive_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
        if value <= 0:
            raise ValueError
    except ValueError:
        value = default
    return value


def _positive_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
        if value <= 0:
            raise ValueError
    except ValueError:
        value = default
    return value


@dataclass(frozen=True)
class Settings:
    LOG_LEVEL: str = field(default="INFO")
    API_BASE_URL: str = field(default="http://localhost:8000/api/v1")
    API_TOKEN: Optional[str] = field(default=None, repr=False)
    HTTP_TIMEOUT_SEC: float = field(default=30.0)
    EXPIRY_WARNING_DAYS: int = field(default=30)
    MIN_RSA_KEY_SIZE: int = field(default=2048)
    ASSUME_DIGITAL_SIGNATURE: bool = field(default=True)
    SIGNATURE_ALGORITHM: str = field(default="RSA-SHA256")

    @staticmethod
    def from_env() -> "Settings":
        log_level = os.getenv("CERTSIGN_LOG_LEVEL", "INFO").upper()
        base_url = os.getenv("CERTSIGN_API_BASE_URL", "http://localhost:8000/api/v1").rstrip("/")
        token = os.getenv("CERTSIGN_API_TOKEN") or None
        assume = os.getenv("CERTSIGN_ASSUME_DIGITAL_SIGNATURE", "true").lower() in _TRUTHY
        algorithm = os.getenv("CERTSIGN_SIGNATURE_ALGORITHM", "RSA-SHA256").strip().upper()
        return Settings(
            LOG_LEVEL=log_level,
            API_BASE_URL=base_url,
            API_TOKEN=token,
            HTTP_TIMEOUT_SEC=_positive_float("CERTSIGN_HTTP_TIMEOUT_SEC", 30.0),
            EXPIRY_WARNING_DAYS=_positive_int("CERTSIGN_EXPIRY_WARNING_DAYS", 30),
            MIN_RSA_KEY_SIZE=_positive_int("CERTSIGN_MIN_RSA_KEY_SIZE", 2048),
            ASSUME_DIGITAL_SIGNATURE=assume,
            SIGNATURE_ALGORITHM=algorithm,
        )
