"""Initialize the database tables."""

import logging

import anyio

from salla_alerts.core.dependencies import get_credential_store

logger = logging.getLogger("init_db")


async def init_db() -> None:
    store_db = get_credential_store()
    try:
        await store_db.connect()
        await store_db.create_tables()
    finally:
        await store_db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("Creating database tables...")
    anyio.run(init_db)
    logger.info("Tables created successfully!")
