"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
DEFAULT_DB_PATH = DATA_DIR / "agentbus.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"
DEFAULT_AGENT_LOG_DIR = LOGS_DIR / "agents"

DEFAULT_PROVIDER = "claude"
DEFAULT_AGENT_TIMEOUT = 30 * 60  # seconds


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_dir(env_value: PathLike | None, default: Path) -> Path:
    """Resolve a directory setting relative to the project root."""
    if not env_value:
        return default
    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class Settings:
    """Runtime settings, read from the environment."""

    database_url: str | None = None
    log_level: str = "INFO"
    default_provider: str = DEFAULT_PROVIDER
    agent_timeout: float = DEFAULT_AGENT_TIMEOUT
    agent_log_dir: Path = DEFAULT_AGENT_LOG_DIR
    api_host: str = "localhost"
    api_port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            default_provider=os.getenv("AGENTBUS_DEFAULT_PROVIDER", DEFAULT_PROVIDER),
            agent_timeout=float(
                os.getenv("AGENTBUS_AGENT_TIMEOUT", str(DEFAULT_AGENT_TIMEOUT))
            ),
            agent_log_dir=resolve_dir(
                os.getenv("AGENTBUS_AGENT_LOG_DIR"), DEFAULT_AGENT_LOG_DIR
            ),
            api_host=os.getenv("API_HOST", "localhost"),
            api_port=int(os.getenv("API_PORT", "8000")),
        )
