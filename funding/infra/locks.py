"""
Per-record locks using PostgreSQL advisory locks.
"""
from contextlib import contextmanager

from django.db import connection


@contextmanager
def advisory_lock(namespace: str, record_id):
    """
    Hold a transaction-scoped advisory lock on ``namespace:record_id``.

    Must run inside ``transaction.atomic``; the lock is released on commit or
    rollback. Other database vendors have no advisory locks and run unlocked.

    Usage:
        with advisory_lock("order", order.id):
            ...
    """
    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
                [f"{namespace}:{record_id}"],
            )
    yield


def order_lock(order_id):
    return advisory_lock("order", order_id)


def transaction_group_lock(transaction_group):
    return advisory_lock("transaction_group", transaction_group)
