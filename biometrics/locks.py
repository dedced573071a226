"""Cluster-wide mutual exclusion for periodic maintenance jobs."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from django.core.cache import cache
from django.db import connection

logger = logging.getLogger(__name__)

# Lease for the cache fallback; long enough for one sweep, short enough to
# recover from a worker that died while holding it.
CACHE_LEASE_SECONDS = 300


@contextmanager
def advisory_lock(lock_id: int) -> Iterator[bool]:
    """Try to take ``lock_id`` without blocking and yield whether it was acquired.

    PostgreSQL session advisory locks are used when available. Other
    backends fall back to an atomic ``cache.add`` lease.
    """

    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute("SELECT pg_try_advisory_lock(%s)", [lock_id])
            acquired = bool(cursor.fetchone()[0])
        try:
            yield acquired
        finally:
            if acquired:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT pg_advisory_unlock(%s)", [lock_id])
        return

    cache_key = f"biometrics:advisory-lock:{lock_id}"
    acquired = cache.add(cache_key, "1", CACHE_LEASE_SECONDS)
    try:
        yield acquired
    finally:
        if acquired:
            cache.delete(cache_key)
