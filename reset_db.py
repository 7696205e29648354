"""
Ricrea lo schema del database (drop_all + create_all).

Uso: python reset_db.py
"""

import asyncio
import logging

from app.core.database import engine
from app.models import Base

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("reset_db")


async def reset() -> None:
    logger.info("Connessione a %s, eliminazione tabelle...", engine.url.render_as_string(hide_password=True))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("%d tabelle eliminate, creazione schema...", len(Base.metadata.tables))
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Database ricreato: document_sequences azzerata")


if __name__ == "__main__":
    asyncio.run(reset())
