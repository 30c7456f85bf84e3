from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

from dotenv import load_dotenv


REQUIRED_ENV = ('TELEGRAM_TOKEN', 'TELEGRAM_CHAT_ID', 'BYBIT_API_KEY', 'BYBIT_API_SECRET')


@dataclass(frozen=True)
class WatchConfig:
    # Telegram
    telegram_token: str
    telegram_chat_id: str
    telegram_poll_timeout_s: int

    # Bybit REST
    bybit_api_key: str
    bybit_api_secret: str
    bybit_base_url: str
    recv_window_ms: int
    http_timeout_s: float

    # Polling
    poll_s: float
    page_size: int
    max_pages: int
    monitoring_enabled: bool

    # Confirmation workflow
    finalize_enabled: bool
    # None means a pending confirmation never expires
    confirmation_timeout_s: Optional[float]

    # Logging
    log_level: str
    log_file: str


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_optional_float(name: str) -> Optional[float]:
    raw = (os.getenv(name) or '').strip()
    if not raw or raw.lower() in ('none', 'off', '0'):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def missing_secrets() -> list:
    return [name for name in REQUIRED_ENV if not (os.getenv(name) or '').strip()]


def load_config(dotenv_path: Optional[str] = None) -> WatchConfig:
    load_dotenv(dotenv_path=dotenv_path or os.getenv("DOTENV_PATH", None))
    missing = missing_secrets()
    if missing:
        raise RuntimeError(f"Missing {'/'.join(missing)}")

    return WatchConfig(
        telegram_token=os.getenv("TELEGRAM_TOKEN", "").strip(),
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", "").strip(),
        telegram_poll_timeout_s=_get_int("TELEGRAM_POLL_TIMEOUT_SECS", 25),
        bybit_api_key=os.getenv("BYBIT_API_KEY", "").strip(),
        bybit_api_secret=os.getenv("BYBIT_API_SECRET", "").strip(),
        bybit_base_url=os.getenv("BYBIT_BASE_URL", "https://api.bybit.com").rstrip("/"),
        recv_window_ms=_get_int("BYBIT_RECV_WINDOW", 5000),
        http_timeout_s=_get_float("P2P_HTTP_TIMEOUT_SECS", 10.0),
        poll_s=_get_float("P2P_POLL_SECS", 20.0),
        page_size=_get_int("P2P_PAGE_SIZE", 10),
        max_pages=max(1, _get_int("P2P_MAX_PAGES", 1)),
        monitoring_enabled=_get_bool("P2P_MONITORING_ENABLED", False),
        finalize_enabled=_get_bool("P2P_FINALIZE_ENABLED", True),
        confirmation_timeout_s=_get_optional_float("P2P_CONFIRMATION_TIMEOUT_SECS"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_file=os.getenv("LOG_FILE", "").strip(),
    )
