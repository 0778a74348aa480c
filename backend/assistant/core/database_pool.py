"""
Async PostgreSQL connection pool using asyncpg.

The pool backs every durable collaborator of the routing core:
- pgvector similarity lookups over pages, sections and passages
- the premium quota conditional update
- conversation checkpoints and finalized history
- the model catalog

Environment variables are loaded from the repository-level ``.env`` file
when present.
"""
import os
from pathlib import Path
from typing import Optional

import asyncpg
from dotenv import load_dotenv

from assistant.core.logging import get_logger

logger = get_logger(__name__)

env_path = Path(__file__).parent.parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

_pool: Optional[asyncpg.Pool] = None


def get_database_url() -> str:
    """DATABASE_URL, or a DSN assembled from DB_* components."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    host = os.getenv("DB_HOST", "postgres")
    port = int(os.getenv("DB_PORT", "5432"))
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "postgres")
    database = os.getenv("DB_NAME", "postgres")

    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


async def initialize_database_pool() -> bool:
    """
    Initialize the primary connection pool.

    Returns:
        True if initialization successful, False otherwise
    """
    global _pool

    try:
        url = get_database_url()
        logger.info("db_pool_initializing", url_prefix=url[:30])
        _pool = await asyncpg.create_pool(
            url,
            min_size=int(os.getenv("DB_POOL_MIN_SIZE", "5")),
            max_size=int(os.getenv("DB_POOL_MAX_SIZE", "20")),
            max_inactive_connection_lifetime=3600,
            command_timeout=30,
        )
        logger.info("db_pool_initialized")
        return True
    except Exception as e:
        logger.error(
            "db_pool_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        _pool = None
        return False


async def close_database_pool() -> None:
    global _pool

    if _pool:
        try:
            await _pool.close()
            logger.info("db_pool_closed")
        except Exception as e:
            logger.error("db_pool_close_failed", error=str(e))
        finally:
            _pool = None


def get_pool() -> Optional[asyncpg.Pool]:
    return _pool
