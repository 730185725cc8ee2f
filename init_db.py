import argparse
import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cazuela import models  # noqa: F401  registers the tables on Base.metadata
from cazuela.config import configure_logging, settings
from cazuela.db import Base, SessionLocal, engine
from cazuela.demo_data import seed_demo_data

logger = logging.getLogger("init_db")


def main() -> int:
    parser = argparse.ArgumentParser(description="Check the database and create the schema.")
    parser.add_argument("--seed", action="store_true", help="load the demo catalog")
    args = parser.parse_args()

    configure_logging()
    logger.info("DATABASE_URL=%s", settings.database_url)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError:
        logger.exception("DB connection FAILED")
        return 1
    logger.info("DB connection OK, schema ready")

    if args.seed:
        with SessionLocal() as db:
            seed_demo_data(db)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
