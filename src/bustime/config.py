import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

MTA_BASE = "https://bustime.mta.info"

# Default trip shown when the UI hasn't picked one: B52, Gates/Bedford -> Joralemon/Court
DEFAULT_LINE_ID = "MTA NYCT_B52"
DEFAULT_ORIGIN_ID = "MTA_304213"
DEFAULT_DESTINATION_ID = "MTA_302434"
DEFAULT_STOP_NAMES = {
    DEFAULT_ORIGIN_ID: "Gates / Bedford",
    DEFAULT_DESTINATION_ID: "Joralemon / Court",
}


def _env_number(name: str, default, cast=float):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %r", name, raw, default)
        return default


def _env_json(name: str) -> Dict[str, Any]:
    try:
        value = json.loads(os.getenv(name, "{}"))
    except json.JSONDecodeError:
        logger.warning("Ignoring invalid JSON in %s", name)
        return {}
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class Settings:
    mta_api_key: Optional[str] = None
    mta_base_url: str = MTA_BASE
    provider: str = "mock"
    provider_opts: Dict[str, Any] = field(default_factory=dict)
    frontend_origin: str = "http://localhost:5173"
    log_level: str = "INFO"
    trip_estimate_minutes: float = 15
    stop_batch_size: int = 5
    stop_batch_delay: float = 0.5
    stop_fetch_timeout: float = 8.0
    rate_limit_per_minute: int = 60
    nearby_rate_limit_per_minute: int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mta_api_key=os.getenv("MTA_API_KEY") or None,
            mta_base_url=os.getenv("MTA_BASE_URL", MTA_BASE),
            provider=os.getenv("PROVIDER", "mock"),
            provider_opts=_env_json("PROVIDER_OPTS"),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:5173"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            trip_estimate_minutes=_env_number("TRIP_ESTIMATE_MINUTES", 15),
            stop_batch_size=_env_number("STOP_BATCH_SIZE", 5, int),
            stop_batch_delay=_env_number("STOP_BATCH_DELAY", 0.5),
            stop_fetch_timeout=_env_number("STOP_FETCH_TIMEOUT", 8.0),
            rate_limit_per_minute=_env_number("RATE_LIMIT_PER_MINUTE", 60, int),
            nearby_rate_limit_per_minute=_env_number("NEARBY_RATE_LIMIT_PER_MINUTE", 30, int),
        )
