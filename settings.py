"""
Application settings, read once from the environment (and an optional .env file).
"""
import os
import re
from datetime import timedelta
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """Parse "7d", "12h", "30m", "45s" or a bare number of seconds."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    mongodb_uri: str = "mongodb://localhost:27017"
    database_name: str = "shop"
    use_transactions: bool = True
    server_selection_timeout_ms: int = 30000
    socket_timeout_ms: int = 45000

    jwt_secret: str = "fallback-secret-key"
    jwt_algorithm: str = "HS256"
    token_lifetime: timedelta = timedelta(days=7)
    salt_rounds: int = 12

    enforce_admin_role: bool = True
    admin_emails: List[str] = []
    strict_order_transitions: bool = False

    api_prefix: str = "/api/v1"
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI") or os.getenv("DATABASE_URL") or "mongodb://localhost:27017",
            database_name=os.getenv("DATABASE_NAME", "shop"),
            use_transactions=_flag("MONGODB_TRANSACTIONS", True),
            server_selection_timeout_ms=int(os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "30000")),
            socket_timeout_ms=int(os.getenv("MONGODB_SOCKET_TIMEOUT_MS", "45000")),
            jwt_secret=os.getenv("JWT_SECRET", "fallback-secret-key"),
            token_lifetime=parse_duration(os.getenv("EXPIRATION_TOKEN", "7d")),
            salt_rounds=int(os.getenv("SALT_ROUNDS", "12")),
            enforce_admin_role=_flag("ENFORCE_ADMIN_ROLE", True),
            admin_emails=[e.lower() for e in _csv(os.getenv("ADMIN_EMAILS", ""))],
            strict_order_transitions=_flag("STRICT_ORDER_TRANSITIONS", False),
            api_prefix=os.getenv("API_PREFIX", "/api/v1"),
            cors_origins=_csv(os.getenv("CORS_ORIGINS", "*")) or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", "8000")),
        )
