"""Persistence layer for subscription records."""
from __future__ import annotations

from contextlib import contextmanager
from itertools import count
from typing import Dict, Iterable, List, Optional, Set

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..db import managed_connection
from .exceptions import SubscriptionConflictError, SubscriptionNotFoundError
from .models import (
    NEVER_EXPIRES,
    PaymentConfirmation,
    SortField,
    Subscription,
    SubscriptionFilter,
    SubscriptionSort,
    expiry_sort_key,
)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS groupsub_packages (
        package_id SERIAL PRIMARY KEY,
        ident VARCHAR(30) NOT NULL UNIQUE,
        name VARCHAR(255) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        currency VARCHAR(3),
        display_order INTEGER NOT NULL DEFAULT 0,
        enabled BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groupsub_package_groups (
        package_id INTEGER NOT NULL REFERENCES groupsub_packages (package_id) ON DELETE CASCADE,
        group_id INTEGER NOT NULL,
        PRIMARY KEY (package_id, group_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groupsub_package_prices (
        price_id SERIAL PRIMARY KEY,
        package_id INTEGER NOT NULL REFERENCES groupsub_packages (package_id) ON DELETE CASCADE,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        length_days INTEGER NOT NULL DEFAULT 0 CHECK (length_days >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groupsub_subscriptions (
        id SERIAL PRIMARY KEY,
        package_id INTEGER NOT NULL CHECK (package_id > 0),
        user_id INTEGER NOT NULL CHECK (user_id > 0),
        expires_at BIGINT NOT NULL DEFAULT 0 CHECK (expires_at >= 0),
        UNIQUE (user_id, package_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groupsub_transactions (
        transaction_id VARCHAR(64) PRIMARY KEY,
        user_id INTEGER NOT NULL,
        package_id INTEGER NOT NULL,
        length_days INTEGER NOT NULL,
        amount VARCHAR(32),
        currency VARCHAR(3),
        processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)

_STORE_SORT_FIELDS = {SortField.ID, SortField.EXPIRES_AT}


def ensure_schema(conn: Optional[PgConnection] = None) -> None:
    """Create the extension tables when they do not exist yet."""

    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=int(row["id"]),
        package_id=int(row["package_id"]),
        user_id=int(row["user_id"]),
        expires_at=int(row["expires_at"] or NEVER_EXPIRES),
    )


def _check_sort(sort: SubscriptionSort) -> None:
    if sort.field not in _STORE_SORT_FIELDS:
        raise ValueError(f"Subscription store cannot sort by {sort.field.value}")


def _order_by_clause(sort: SubscriptionSort) -> str:
    if sort.field == SortField.EXPIRES_AT:
        # 0 means never, so those rows go after every real date.
        if sort.descending:
            return "(expires_at = 0) DESC, expires_at DESC, id ASC"
        return "(expires_at = 0) ASC, expires_at ASC, id ASC"
    return "id DESC" if sort.descending else "id ASC"


def _where_clause(filters: SubscriptionFilter) -> tuple[str, list]:
    clauses: List[str] = []
    params: list = []
    if filters.user_id:
        clauses.append("user_id = %s")
        params.append(filters.user_id)
    if filters.package_id:
        clauses.append("package_id = %s")
        params.append(filters.package_id)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


class PostgresSubscriptionRepository:
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_subscription(self, subscription_id: int) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, package_id, user_id, expires_at
                FROM groupsub_subscriptions
                WHERE id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
        if not row:
            raise SubscriptionNotFoundError(subscription_id)
        return _row_to_subscription(row)

    def find_subscription(self, *, user_id: int, package_id: int) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, package_id, user_id, expires_at
                FROM groupsub_subscriptions
                WHERE user_id = %s AND package_id = %s
                ORDER BY id ASC
                LIMIT 1
                """,
                (user_id, package_id),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def list_subscriptions(
        self,
        filters: SubscriptionFilter,
        sort: SubscriptionSort,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Subscription]:
        _check_sort(sort)
        where, params = _where_clause(filters)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT id, package_id, user_id, expires_at
                FROM groupsub_subscriptions
                {where}
                ORDER BY {_order_by_clause(sort)}
                LIMIT %s OFFSET %s
                """,
                (*params, limit, max(0, offset)),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def count_subscriptions(self, filters: SubscriptionFilter) -> int:
        where, params = _where_clause(filters)
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT COUNT(id) AS sub_count FROM groupsub_subscriptions {where}",
                tuple(params),
            )
            row = cursor.fetchone()
            return int(row["sub_count"]) if row else 0

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert a new record or update the existing one with the same id."""

        subscription.ensure_persistable()
        params = {
            "id": subscription.id,
            "package_id": subscription.package_id,
            "user_id": subscription.user_id,
            "expires_at": subscription.expires_at,
        }
        try:
            with self._cursor() as cursor:
                if subscription.id is None:
                    cursor.execute(
                        """
                        INSERT INTO groupsub_subscriptions (package_id, user_id, expires_at)
                        VALUES (%(package_id)s, %(user_id)s, %(expires_at)s)
                        RETURNING id, package_id, user_id, expires_at
                        """,
                        params,
                    )
                else:
                    cursor.execute(
                        """
                        UPDATE groupsub_subscriptions
                        SET package_id = %(package_id)s,
                            user_id = %(user_id)s,
                            expires_at = %(expires_at)s
                        WHERE id = %(id)s
                        RETURNING id, package_id, user_id, expires_at
                        """,
                        params,
                    )
                row = cursor.fetchone()
        except psycopg2.errors.UniqueViolation as exc:
            raise SubscriptionConflictError(subscription.user_id, subscription.package_id) from exc

        if not row:
            if subscription.id is not None:
                raise SubscriptionNotFoundError(subscription.id)
            raise RuntimeError("Failed to persist subscription")
        return _row_to_subscription(row)

    def delete_subscription(self, subscription_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM groupsub_subscriptions WHERE id = %s",
                (subscription_id,),
            )
            return cursor.rowcount > 0

    def entitled_user_ids(self, package_id: int, *, as_of: int, grace_seconds: int) -> Set[int]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT DISTINCT user_id
                FROM groupsub_subscriptions
                WHERE package_id = %s
                  AND (expires_at = 0 OR expires_at > %s)
                """,
                (package_id, as_of - grace_seconds),
            )
            rows = cursor.fetchall() or []
            return {int(row["user_id"]) for row in rows}

    def has_transaction(self, transaction_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM groupsub_transactions WHERE transaction_id = %s LIMIT 1",
                (transaction_id,),
            )
            return cursor.fetchone() is not None

    def record_transaction(self, confirmation: PaymentConfirmation) -> bool:
        """Store a processed payment; ``False`` when it was already recorded."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO groupsub_transactions (
                    transaction_id,
                    user_id,
                    package_id,
                    length_days,
                    amount,
                    currency
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (transaction_id) DO NOTHING
                """,
                (
                    confirmation.transaction_id,
                    confirmation.user_id,
                    confirmation.package_id,
                    confirmation.length_days,
                    confirmation.amount,
                    confirmation.currency,
                ),
            )
            return cursor.rowcount > 0


class InMemorySubscriptionRepository:
    """Dictionary backed store suitable for tests and local development."""

    def __init__(self) -> None:
        self._records: Dict[int, Subscription] = {}
        self._transactions: Set[str] = set()
        self._ids = count(1)

    def get_subscription(self, subscription_id: int) -> Subscription:
        try:
            return self._records[subscription_id]
        except KeyError as exc:
            raise SubscriptionNotFoundError(subscription_id) from exc

    def find_subscription(self, *, user_id: int, package_id: int) -> Optional[Subscription]:
        for record in sorted(self._records.values(), key=lambda sub: sub.id or 0):
            if record.user_id == user_id and record.package_id == package_id:
                return record
        return None

    def list_subscriptions(
        self,
        filters: SubscriptionFilter,
        sort: SubscriptionSort,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Subscription]:
        _check_sort(sort)
        matching = sorted(
            (record for record in self._records.values() if filters.matches(record)),
            key=lambda sub: sub.id or 0,
        )
        if sort.field == SortField.EXPIRES_AT:
            # list.sort stays stable when reversed, so ties keep ascending id order.
            matching.sort(key=expiry_sort_key, reverse=sort.descending)
        elif sort.descending:
            matching.reverse()

        start = max(0, offset)
        end = None if limit is None else start + limit
        return matching[start:end]

    def count_subscriptions(self, filters: SubscriptionFilter) -> int:
        return sum(1 for record in self._records.values() if filters.matches(record))

    def save_subscription(self, subscription: Subscription) -> Subscription:
        subscription.ensure_persistable()
        duplicate = self.find_subscription(
            user_id=subscription.user_id, package_id=subscription.package_id
        )
        if duplicate is not None and duplicate.id != subscription.id:
            raise SubscriptionConflictError(subscription.user_id, subscription.package_id)

        if subscription.id is None:
            stored = subscription.model_copy(update={"id": next(self._ids)})
        elif subscription.id in self._records:
            stored = subscription
        else:
            raise SubscriptionNotFoundError(subscription.id)

        self._records[stored.id] = stored
        return stored

    def delete_subscription(self, subscription_id: int) -> bool:
        return self._records.pop(subscription_id, None) is not None

    def entitled_user_ids(self, package_id: int, *, as_of: int, grace_seconds: int) -> Set[int]:
        return {
            record.user_id
            for record in self._records.values()
            if record.package_id == package_id and record.is_entitled(as_of, grace_seconds)
        }

    def has_transaction(self, transaction_id: str) -> bool:
        return transaction_id in self._transactions

    def record_transaction(self, confirmation: PaymentConfirmation) -> bool:
        if confirmation.transaction_id in self._transactions:
            return False
        self._transactions.add(confirmation.transaction_id)
        return True


__all__ = [
    "InMemorySubscriptionRepository",
    "PostgresSubscriptionRepository",
    "SCHEMA_STATEMENTS",
    "ensure_schema",
]
