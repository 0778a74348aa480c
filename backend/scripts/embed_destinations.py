"""
Backfill embeddings for navigation destinations.

This script:
1. Loads active pages and sections whose embedding is missing (or all of
   them with --all)
2. Embeds "title. description" with the configured embedding gateway
3. Writes the vectors back to page_navigation / page_sections
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from assistant.core.database_pool import close_database_pool, get_pool, initialize_database_pool
from assistant.core.exceptions import RetrievalError
from assistant.core.logging import configure_logging, get_logger
from assistant.services.search.embeddings import get_embedding_gateway
from assistant.services.search.similarity import to_vector_literal

configure_logging(log_level="INFO", json_output=False)
logger = get_logger(__name__)

TABLES = ("page_navigation", "page_sections")


def destination_text(row) -> str:
    parts = [row["title"].strip()]
    if row["description"]:
        parts.append(row["description"].strip())
    return ". ".join(p for p in parts if p)


async def embed_table(table: str, refresh_all: bool) -> int:
    pool = get_pool()
    where = "is_active = true" if refresh_all else "is_active = true AND embedding IS NULL"
    rows = await pool.fetch(f"SELECT id, title, description FROM {table} WHERE {where}")
    logger.info("embed_destinations_loaded", table=table, count=len(rows))

    gateway = get_embedding_gateway()
    updated = 0
    for row in rows:
        try:
            vector = await gateway.embed(destination_text(row))
        except RetrievalError as e:
            logger.error("embed_destinations_failed", table=table, id=row["id"], error=str(e))
            continue
        await pool.execute(
            f"UPDATE {table} SET embedding = ($1::text)::vector WHERE id = $2",
            to_vector_literal(vector),
            row["id"],
        )
        updated += 1

    logger.info("embed_destinations_table_done", table=table, updated=updated)
    return updated


async def main(refresh_all: bool) -> int:
    if not await initialize_database_pool():
        logger.error("embed_destinations_db_unavailable")
        return 1
    try:
        for table in TABLES:
            await embed_table(table, refresh_all)
    finally:
        await close_database_pool()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Embed navigation destinations")
    parser.add_argument("--all", action="store_true", help="Re-embed every active destination")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.all)))
