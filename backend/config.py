import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:4173",
]


@dataclass
class Settings:
    data_dir: str = "./data"
    database_url: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    frontend_url: Optional[str] = None
    keepalive_seconds: float = 15.0
    log_level: str = "INFO"

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        os.makedirs(self.data_dir, exist_ok=True)
        db_path = os.path.abspath(os.path.join(self.data_dir, "vote-tracker.db"))
        return f"sqlite+aiosqlite:///{db_path}"

    @property
    def join_base_url(self) -> str:
        if self.frontend_url:
            return self.frontend_url.rstrip("/")
        return self.cors_origins[0].rstrip("/")


def get_settings() -> Settings:
    """Build settings from the environment (and .env, if present)."""
    load_dotenv()

    origins = list(DEFAULT_ORIGINS)
    if env_origins := os.getenv("CORS_ORIGINS"):
        origins.extend([o.strip() for o in env_origins.split(",") if o.strip()])

    return Settings(
        data_dir=os.getenv("VOTE_TRACKER_DATA_DIR", "./data"),
        database_url=os.getenv("DATABASE_URL") or None,
        cors_origins=origins,
        frontend_url=os.getenv("FRONTEND_URL") or None,
        keepalive_seconds=float(os.getenv("STREAM_KEEPALIVE_SECONDS", "15")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(getattr(h, "_vote_tracker", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        handler._vote_tracker = True
        root.addHandler(handler)
    root.setLevel(level.upper())
