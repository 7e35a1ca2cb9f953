"""
PostgreSQL connection helper for strata.

Provider configuration records live in PostgreSQL; this module hands out
psycopg connections for the repository that reads them.
"""

import psycopg
from loguru import logger

from strata_core.config import settings


def get_db_connection():
    """
    Get a PostgreSQL database connection.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM storage_providers")

    Returns:
        psycopg.Connection: A PostgreSQL connection.
    """
    try:
        conn = psycopg.connect(settings.POSTGRES_DSN)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise
