from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

import psycopg2.errors
import pytest

from groupsub import app_context
from groupsub.app.packages import PackagePrice, PostgresPackageCatalog
from groupsub.app.services.subscriptions import PostgresGroupMembership, PostgresUserDirectory
from groupsub.app.subscriptions import (
    PostgresSubscriptionRepository,
    SortDirection,
    SortField,
    Subscription,
    SubscriptionConflictError,
    SubscriptionFilter,
    SubscriptionNotFoundError,
    SubscriptionSort,
)
from groupsub.app.subscriptions.repository import SCHEMA_STATEMENTS, ensure_schema


class _FakeCursor:
    def __init__(self, connection: "_FakeConnection") -> None:
        self._connection = connection
        self.rowcount = 0
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def execute(self, query: str, params: Any = None) -> None:
        self._connection.executed.append((" ".join(query.split()), params))
        if self._connection.error is not None:
            raise self._connection.error
        self.rowcount = self._connection.rowcount

    def fetchone(self):
        rows = self._connection.rows
        return rows[0] if rows else None

    def fetchall(self):
        return list(self._connection.rows)

    def close(self) -> None:
        self.closed = True


class _FakeConnection:
    def __init__(
        self,
        rows: Optional[List[dict]] = None,
        *,
        rowcount: int = 0,
        error: Optional[Exception] = None,
    ) -> None:
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.executed: List[tuple] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, cursor_factory=None):
        return _FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


def _row(**overrides) -> dict:
    row = {"id": 1, "package_id": 2, "user_id": 5, "expires_at": 0}
    row.update(overrides)
    return row


def test_entitled_user_ids_shifts_cutoff_by_grace():
    conn = _FakeConnection([{"user_id": 5}, {"user_id": 9}])
    repository = PostgresSubscriptionRepository(conn=conn)

    user_ids = repository.entitled_user_ids(2, as_of=1_000_000, grace_seconds=86400)

    assert user_ids == {5, 9}
    query, params = conn.executed[0]
    assert "expires_at = 0 OR expires_at > %s" in query
    assert params == (2, 1_000_000 - 86400)


def test_list_orders_never_expiring_first_when_descending():
    conn = _FakeConnection([_row(), _row(id=2, user_id=6, expires_at=1_700_000_000)])
    repository = PostgresSubscriptionRepository(conn=conn)

    subscriptions = repository.list_subscriptions(
        SubscriptionFilter(package_id=2),
        SubscriptionSort(field=SortField.EXPIRES_AT, direction=SortDirection.DESC),
        limit=10,
        offset=-3,
    )

    assert [sub.id for sub in subscriptions] == [1, 2]
    query, params = conn.executed[0]
    assert "WHERE package_id = %s" in query
    assert "ORDER BY (expires_at = 0) DESC, expires_at DESC, id ASC" in query
    assert params == (2, 10, 0)


def test_count_applies_filter():
    conn = _FakeConnection([{"sub_count": 3}])
    repository = PostgresSubscriptionRepository(conn=conn)

    assert repository.count_subscriptions(SubscriptionFilter(user_id=5, package_id=2)) == 3
    query, params = conn.executed[0]
    assert "WHERE user_id = %s AND package_id = %s" in query
    assert params == (5, 2)


def test_insert_unique_violation_becomes_conflict():
    conn = _FakeConnection(error=psycopg2.errors.UniqueViolation("duplicate key"))
    repository = PostgresSubscriptionRepository(conn=conn)

    with pytest.raises(SubscriptionConflictError) as excinfo:
        repository.save_subscription(Subscription(user_id=5, package_id=2))

    assert (excinfo.value.user_id, excinfo.value.package_id) == (5, 2)


def test_update_of_missing_row_raises_not_found():
    conn = _FakeConnection([])
    repository = PostgresSubscriptionRepository(conn=conn)

    with pytest.raises(SubscriptionNotFoundError):
        repository.save_subscription(Subscription(id=7, user_id=5, package_id=2))

    assert conn.executed[0][0].startswith("UPDATE groupsub_subscriptions")


def test_delete_reports_rowcount():
    repository = PostgresSubscriptionRepository(conn=_FakeConnection(rowcount=1))
    assert repository.delete_subscription(1) is True

    repository = PostgresSubscriptionRepository(conn=_FakeConnection(rowcount=0))
    assert repository.delete_subscription(1) is False


def test_managed_connection_commits_and_closes():
    conn = _FakeConnection([_row(expires_at=None)])
    app_context.configure(get_conn=lambda: conn, get_current_admin=lambda **_: None)
    try:
        subscription = PostgresSubscriptionRepository().get_subscription(1)
    finally:
        app_context.reset()

    assert subscription.never_expires
    assert conn.commits >= 1
    assert conn.closed is True


def test_managed_connection_rolls_back_on_error():
    conn = _FakeConnection(error=RuntimeError("connection lost"))
    app_context.configure(get_conn=lambda: conn, get_current_admin=lambda **_: None)
    try:
        with pytest.raises(RuntimeError):
            PostgresSubscriptionRepository().delete_subscription(1)
    finally:
        app_context.reset()

    assert conn.rollbacks >= 1
    assert conn.commits == 0
    assert conn.closed is True


def test_has_transaction_looks_up_transaction_id():
    conn = _FakeConnection([{"found": 1}])
    assert PostgresSubscriptionRepository(conn=conn).has_transaction("txn-1") is True
    assert conn.executed[0][1] == ("txn-1",)

    assert PostgresSubscriptionRepository(conn=_FakeConnection([])).has_transaction("txn-2") is False


def test_ensure_schema_creates_every_table():
    conn = _FakeConnection()

    ensure_schema(conn)

    assert len(conn.executed) == len(SCHEMA_STATEMENTS)
    assert any("groupsub_package_prices" in query for query, _ in conn.executed)
    assert any("UNIQUE (user_id, package_id)" in query for query, _ in conn.executed)


def test_group_membership_grant_skips_existing_rows():
    conn = _FakeConnection()

    PostgresGroupMembership(conn=conn).grant(10, 5)

    query, params = conn.executed[0]
    assert query.startswith("INSERT INTO user_group (group_id, user_id, user_pending)")
    assert "WHERE NOT EXISTS" in query
    assert params == (10, 5, 10, 5)


def test_group_membership_revoke_deletes_row():
    conn = _FakeConnection()

    PostgresGroupMembership(conn=conn).revoke(10, 5)

    assert conn.executed == [("DELETE FROM user_group WHERE group_id = %s AND user_id = %s", (10, 5))]


def test_user_directory_maps_ids_to_names():
    conn = _FakeConnection([{"user_id": 1, "username": "carol"}, {"user_id": 2, "username": "Alice"}])

    names = PostgresUserDirectory(conn=conn).get_usernames([2, 1, 2])

    assert names == {1: "carol", 2: "Alice"}
    query, params = conn.executed[0]
    assert "WHERE user_id = ANY(%s)" in query
    assert params == ([1, 2],)


def test_user_directory_skips_query_for_no_ids():
    conn = _FakeConnection()

    assert PostgresUserDirectory(conn=conn).get_usernames([]) == {}
    assert conn.executed == []


def _package_row(**overrides) -> dict:
    row = {
        "package_id": 2,
        "ident": "supporter",
        "name": "Supporter",
        "description": "",
        "currency": None,
        "display_order": 0,
        "enabled": True,
        "group_ids": [10, 11],
        "prices": [{"price": "5.00", "length_days": 30}],
    }
    row.update(overrides)
    return row


def test_package_catalog_builds_definitions():
    conn = _FakeConnection([_package_row()])

    package = PostgresPackageCatalog(conn=conn).get_package(2)

    assert package.group_ids == (10, 11)
    assert package.prices == (PackagePrice(price=Decimal("5.00"), length_days=30),)
    assert package.currency is None
    query, params = conn.executed[0]
    assert "ARRAY_AGG(g.group_id ORDER BY g.group_id) FILTER (WHERE g.group_id IS NOT NULL)" in query
    assert "WHERE p.package_id = %s" in query
    assert params == (2,)


def test_package_catalog_handles_packages_without_groups_or_prices():
    conn = _FakeConnection([_package_row(group_ids=[], prices=[], currency="EUR")])

    package = PostgresPackageCatalog(conn=conn).get_package(2)

    assert package.group_ids == ()
    assert package.prices == ()
    assert package.currency == "EUR"


def test_package_catalog_batch_lookup():
    conn = _FakeConnection([_package_row(), _package_row(package_id=3, ident="patron")])
    catalog = PostgresPackageCatalog(conn=conn)

    assert catalog.get_packages([]) == {}
    assert conn.executed == []

    packages = catalog.get_packages([3, 2, 3])

    assert sorted(packages) == [2, 3]
    query, params = conn.executed[0]
    assert "WHERE p.package_id = ANY(%s)" in query
    assert params == ([2, 3],)


def test_package_catalog_lists_enabled_packages_in_display_order():
    conn = _FakeConnection([_package_row()])

    packages = PostgresPackageCatalog(conn=conn).list_packages()

    assert [package.ident for package in packages] == ["supporter"]
    query, _ = conn.executed[0]
    assert "WHERE p.enabled" in query
    assert "ORDER BY p.display_order, p.package_id" in query


def test_package_catalog_finds_packages_granting_group():
    conn = _FakeConnection([_package_row()])

    packages = PostgresPackageCatalog(conn=conn).packages_granting(11)

    assert [package.package_id for package in packages] == [2]
    assert conn.executed[0][1] == (11,)
