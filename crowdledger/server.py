"""Process entry point: validate configuration, check the store, serve HTTP."""
from __future__ import annotations

import sys

import uvicorn
from sqlalchemy.exc import SQLAlchemyError

from crowdledger import db
from crowdledger.config import get_settings
from crowdledger.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)

    if not settings.database_url:
        logger.error("DATABASE_URL is not set; refusing to start.")
        sys.exit(1)

    try:
        db.check_connection()
    except SQLAlchemyError:
        logger.exception("Could not connect to the ledger store.")
        db.close_engine()
        sys.exit(1)
    logger.info("Connected to the ledger store.")

    logger.info("Listening", extra={"host": settings.host, "port": settings.port})
    uvicorn.run(
        "crowdledger.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
