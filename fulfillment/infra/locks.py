"""
Cross-process locks using PostgreSQL advisory locks.
"""
from contextlib import contextmanager

from django.db import connection


@contextmanager
def advisory_lock(name: str):
    """
    Try to take a session-level advisory lock without waiting.

    Yields True when the lock was acquired (or the backend has no advisory
    locks, e.g. SQLite in tests), False when another session holds it.

    Usage:
        with advisory_lock("refund-sweep") as acquired:
            if not acquired:
                return
            ...
    """
    if connection.vendor != "postgresql":
        yield True
        return

    with connection.cursor() as cursor:
        # hashtext maps the name to a stable integer key
        cursor.execute("SELECT pg_try_advisory_lock(hashtext(%s)::bigint)", [name])
        acquired = bool(cursor.fetchone()[0])
    try:
        yield acquired
    finally:
        if acquired:
            with connection.cursor() as cursor:
                cursor.execute("SELECT pg_advisory_unlock(hashtext(%s)::bigint)", [name])
