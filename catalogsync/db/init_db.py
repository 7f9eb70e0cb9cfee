from __future__ import annotations

import logging

from sqlalchemy import Engine, text

from catalogsync.db.migrations import apply_migrations
from catalogsync.db.models import Base
from catalogsync.db.session import get_engine

logger = logging.getLogger(__name__)


def initialize_database(engine: Engine | None = None) -> None:
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    applied = apply_migrations(engine)
    if applied:
        logger.info("Applied %d schema migration(s): %s", len(applied), ", ".join(applied))

    if engine.url.drivername.startswith("sqlite"):
        with engine.connect() as conn:
            conn.execute(text("PRAGMA optimize;"))
            conn.commit()
