# backend/parq/init_db.py
"""Create the booking engine tables."""

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from parq import models  # noqa: F401  (registers the tables on Base.metadata)
from parq.database import Base, engine

logger = logging.getLogger(__name__)


def init_db(bind: Optional[Engine] = None) -> None:
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ready", extra={"tables": sorted(Base.metadata.tables)})


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    init_db()
