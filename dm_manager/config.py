"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
DEFAULT_DB_PATH = DATA_DIR / "dm_manager.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime settings, read once from the environment."""

    # Instagram / Meta
    instagram_app_secret: str = ""
    instagram_verify_token: str = ""
    instagram_page_id: str = ""
    instagram_access_token: str = ""
    local_mode: bool = False

    # Debounce
    debounce_delay_seconds: int = 60
    debounce_max_delay_seconds: int = 60

    # Ingress filters
    test_mode_sender_id: str = ""
    reset_keyword: str = ""

    # Manager notifications
    notification_cooldown_days: int = 7
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    net_session_coordinator: str = "Adarsh"

    # Agent
    ai_provider: str = "anthropic"
    ai_model: str | None = None
    agent_max_turns: int = 8
    history_limit: int = 50

    # Schedule provider
    schedule_provider_url: str = ""

    # Dispatch jobs
    dispatch_token_secret: str = ""
    dispatch_token_issuer: str = "dm-manager-dispatcher"
    dispatch_token_audience: str = "dm-manager-processor"
    task_target_url: str = ""
    task_max_attempts: int = 5
    task_timeout_seconds: float = 120.0
    task_poll_interval_seconds: float = 1.0
    task_concurrency: int = 10

    region: str = "europe-west2"
    database_url: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        min_delay = int(os.getenv("DEBOUNCE_DELAY_SECONDS", "60"))
        max_delay = int(os.getenv("DEBOUNCE_MAX_DELAY_SECONDS", str(min_delay)))
        if max_delay < min_delay:
            raise ValueError(
                "DEBOUNCE_MAX_DELAY_SECONDS must not be lower than DEBOUNCE_DELAY_SECONDS"
            )

        return cls(
            instagram_app_secret=os.getenv("INSTAGRAM_APP_SECRET", ""),
            instagram_verify_token=os.getenv("INSTAGRAM_VERIFY_TOKEN", ""),
            instagram_page_id=os.getenv("INSTAGRAM_PAGE_ID", ""),
            instagram_access_token=os.getenv("META_MESSENGER_ACCESS_TOKEN", ""),
            local_mode=_env_bool("LOCAL_MODE"),
            debounce_delay_seconds=min_delay,
            debounce_max_delay_seconds=max_delay,
            test_mode_sender_id=os.getenv("TEST_MODE_SENDER_ID", ""),
            reset_keyword=os.getenv("RESET_KEYWORD", ""),
            notification_cooldown_days=int(os.getenv("NOTIFICATION_COOLDOWN_DAYS", "7")),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", ""),
            net_session_coordinator=os.getenv("NET_SESSION_COORDINATOR", "Adarsh"),
            ai_provider=os.getenv("AI_PROVIDER", "anthropic"),
            ai_model=os.getenv("AI_MODEL") or None,
            agent_max_turns=int(os.getenv("AGENT_MAX_TURNS", "8")),
            history_limit=int(os.getenv("HISTORY_LIMIT", "50")),
            schedule_provider_url=os.getenv("SCHEDULE_PROVIDER_URL", ""),
            dispatch_token_secret=os.getenv("DISPATCH_TOKEN_SECRET", ""),
            dispatch_token_issuer=os.getenv(
                "DISPATCH_TOKEN_ISSUER", "dm-manager-dispatcher"
            ),
            dispatch_token_audience=os.getenv(
                "DISPATCH_TOKEN_AUDIENCE", "dm-manager-processor"
            ),
            task_target_url=os.getenv("TASK_TARGET_URL", ""),
            task_max_attempts=int(os.getenv("TASK_MAX_ATTEMPTS", "5")),
            task_timeout_seconds=float(os.getenv("TASK_TIMEOUT_SECONDS", "120")),
            task_poll_interval_seconds=float(
                os.getenv("TASK_POLL_INTERVAL_SECONDS", "1")
            ),
            task_concurrency=int(os.getenv("TASK_CONCURRENCY", "10")),
            region=os.getenv("REGION", "europe-west2"),
            database_url=os.getenv("DATABASE_URL") or None,
        )
