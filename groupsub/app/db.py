"""Connection helpers shared by the PostgreSQL repositories."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from psycopg2.extensions import connection as PgConnection

from .. import app_context


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = app_context.get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


__all__ = ["managed_connection"]
