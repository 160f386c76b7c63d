from __future__ import annotations

from sqlalchemy import create_engine

from .config import Settings


def get_engine(settings: Settings):
    url = settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is required")
    return create_engine(url, pool_pre_ping=True)
