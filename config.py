from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from application.sessions import SessionSlots
from domain.clock import SessionClock


@dataclass
class Settings:
    db_backend: str = "sqlite"
    db_path: str = "poker.db"
    database_url: Optional[str] = None
    telegram_token: Optional[str] = None
    discord_token: Optional[str] = None
    log_level: str = "INFO"
    stale_session_hours: int = 120

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            db_backend=os.environ.get("DB_BACKEND", "sqlite").lower(),
            db_path=os.environ.get("DB_PATH", "poker.db"),
            database_url=os.environ.get("DATABASE_URL"),
            telegram_token=os.environ.get("TELEGRAM_TOKEN"),
            discord_token=os.environ.get("DISCORD_TOKEN"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            stale_session_hours=int(os.environ.get("STALE_SESSION_HOURS", "120")),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_slots(settings: Settings) -> SessionSlots:
    """Wire the repositories for the configured backend into a `SessionSlots`."""

    stale_after = timedelta(hours=settings.stale_session_hours)

    if settings.db_backend == "postgres":
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL environment variable is not set.")

        from infrastructure.db.manual_staker_repository_postgres import (
            PostgresManualStakerRepository,
        )
        from infrastructure.db.parked_session_repository_postgres import (
            PostgresParkedSessionRepository,
        )
        from infrastructure.db.session_repository_postgres import PostgresLiveSessionRepository
        from infrastructure.db.stake_repository_postgres import PostgresStakeRepository

        db_params = {"dsn": settings.database_url}
        return SessionSlots(
            PostgresLiveSessionRepository(db_params),
            PostgresParkedSessionRepository(db_params),
            PostgresStakeRepository(db_params),
            manual_staker_repo=PostgresManualStakerRepository(db_params),
            clock=SessionClock(),
            stale_after=stale_after,
        )

    if settings.db_backend != "sqlite":
        raise RuntimeError(f"Unsupported DB_BACKEND: {settings.db_backend}")

    from infrastructure.db.manual_staker_repository_sqlite import SqliteManualStakerRepository
    from infrastructure.db.parked_session_repository_sqlite import SqliteParkedSessionRepository
    from infrastructure.db.session_repository_sqlite import SqliteLiveSessionRepository
    from infrastructure.db.stake_repository_sqlite import SqliteStakeRepository

    return SessionSlots(
        SqliteLiveSessionRepository(settings.db_path),
        SqliteParkedSessionRepository(settings.db_path),
        SqliteStakeRepository(settings.db_path),
        manual_staker_repo=SqliteManualStakerRepository(settings.db_path),
        clock=SessionClock(),
        stale_after=stale_after,
    )
