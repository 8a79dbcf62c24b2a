"""
Configuration for the Policy Pulse bot.

Everything comes from the environment (or a local .env file). Channel ids
that are not valid integers are treated as unset.
"""
import logging
import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

PACIFIC = ZoneInfo("America/Los_Angeles")

# Automatic leaderboard posts, Pacific time. Nothing is posted between
# midnight and 8 AM.
LEADERBOARD_POST_HOURS = (9, 12, 15, 18, 21)
NIGHTLY_CLOSE = (22, 55)
QUIET_HOURS = (0, 8)

RESET_CHECK_MINUTES = 30
KEEPALIVE_MINUTES = 5

MAX_RECENT_ENTRIES = 50
DATA_FILE_NAME = "sales.json"


def _int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.error("%s '%s' is not a valid integer; ignoring it.", name, raw)
        return None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.error("%s '%s' is not a number; using %s.", name, raw, default)
        return default


def _default_project_root() -> Path:
    if os.getenv("PROJECT_ROOT"):
        return Path(os.environ["PROJECT_ROOT"])
    if os.getenv("RENDER"):
        return Path("/opt/render/project/src")
    return Path.cwd()


class Settings:
    """Bot settings loaded from environment variables."""

    DISCORD_TOKEN: str = os.getenv("DISCORD_TOKEN") or os.getenv("DISCORD_BOT_TOKEN", "")

    SALES_CHANNEL_ID: Optional[int] = _int_env("SALES_CHANNEL_ID")
    REPORTS_CHANNEL_ID: Optional[int] = _int_env("REPORTS_CHANNEL_ID")
    BACKUP_CHANNEL_ID: Optional[int] = _int_env("BACKUP_CHANNEL_ID")

    PROJECT_ROOT: Path = _default_project_root()
    DATA_DIR: Path = Path(os.getenv("DATA_DIR") or PROJECT_ROOT / "data")

    # Remote mirror
    GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
    GITHUB_OWNER: str = os.getenv("GITHUB_OWNER", "")
    GITHUB_REPO: str = os.getenv("GITHUB_REPO", "")
    GITHUB_BRANCH: str = os.getenv("GITHUB_BRANCH", "main")
    GIT_TIMEOUT_SECONDS: float = _float_env("GIT_TIMEOUT_SECONDS", 60.0)

    # HTTP health surface and keep-alive
    PORT: int = _int_env("PORT") or 10000
    RENDER: bool = bool(os.getenv("RENDER"))
    RENDER_EXTERNAL_URL: str = os.getenv("RENDER_EXTERNAL_URL", "")

    # Reaction thresholds, applied to the total of one message
    LARGE_SALE_THRESHOLD: float = _float_env("LARGE_SALE_THRESHOLD", 1000.0)
    HUGE_SALE_THRESHOLD: float = _float_env("HUGE_SALE_THRESHOLD", 5000.0)
    MULTI_SALE_COUNT: int = 3

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    DEBUG_COMMANDS: bool = os.getenv("DEBUG_COMMANDS") == "1"

    @classmethod
    def data_file(cls) -> Path:
        return cls.DATA_DIR / DATA_FILE_NAME

    @classmethod
    def mirror_enabled(cls) -> bool:
        """The git mirror only runs when a token and a repository are configured."""
        return bool(cls.GITHUB_TOKEN and cls.GITHUB_OWNER and cls.GITHUB_REPO)

    @classmethod
    def log_level(cls) -> int:
        return getattr(logging, cls.LOG_LEVEL.upper(), logging.INFO)

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required settings are configured.

        Raises:
            ValueError: If any required setting is missing.
        """
        required_settings = {
            "DISCORD_TOKEN": cls.DISCORD_TOKEN,
        }

        missing = [key for key, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Please check your .env file."
            )


settings = Settings()
