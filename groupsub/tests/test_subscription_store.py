"""Unit tests for the subscription entitlement store."""
from __future__ import annotations

import pytest

from groupsub.app.subscriptions import (
    InMemorySubscriptionRepository,
    PaymentConfirmation,
    SortDirection,
    SortField,
    Subscription,
    SubscriptionConflictError,
    SubscriptionFilter,
    SubscriptionNotFoundError,
    SubscriptionSort,
    SubscriptionValidationError,
)

DAY = 86400
T = 1_700_000_000


@pytest.fixture
def repository() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


def test_save_then_get_round_trips_fields(repository):
    stored = repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=T))

    assert stored.id is not None and stored.id > 0
    fetched = repository.get_subscription(stored.id)
    assert fetched == stored
    assert (fetched.user_id, fetched.package_id, fetched.expires_at) == (5, 2, T)


def test_save_existing_id_updates_in_place(repository):
    stored = repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=T))

    updated = repository.save_subscription(stored.model_copy(update={"expires_at": T + DAY}))

    assert updated.id == stored.id
    assert repository.get_subscription(stored.id).expires_at == T + DAY
    assert repository.count_subscriptions(SubscriptionFilter()) == 1


def test_get_missing_subscription_raises_not_found(repository):
    with pytest.raises(SubscriptionNotFoundError) as excinfo:
        repository.get_subscription(42)

    assert excinfo.value.subscription_id == 42
    assert isinstance(excinfo.value, LookupError)


def test_delete_is_idempotent(repository):
    stored = repository.save_subscription(Subscription(user_id=5, package_id=2))

    assert repository.delete_subscription(stored.id) is True
    assert repository.delete_subscription(stored.id) is False


@pytest.mark.parametrize(
    ("subscription", "field"),
    [
        (Subscription(user_id=0, package_id=2), "user_id"),
        (Subscription(user_id=5, package_id=0), "package_id"),
        (Subscription(user_id=5, package_id=2).model_copy(update={"expires_at": -1}), "expires_at"),
    ],
)
def test_save_rejects_unpersistable_records(repository, subscription, field):
    with pytest.raises(SubscriptionValidationError) as excinfo:
        repository.save_subscription(subscription)

    assert excinfo.value.field == field
    assert repository.count_subscriptions(SubscriptionFilter()) == 0


def test_duplicate_user_package_pair_conflicts(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2))

    with pytest.raises(SubscriptionConflictError):
        repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=T))


def test_never_expiring_subscription_is_always_entitled(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=0))

    assert repository.entitled_user_ids(2, as_of=T * 10, grace_seconds=0) == {5}
    assert repository.entitled_user_ids(2, as_of=0, grace_seconds=DAY) == {5}


def test_grace_period_shifts_comparison_instant(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=T))

    assert repository.entitled_user_ids(2, as_of=T + 1, grace_seconds=DAY) == {5}
    assert repository.entitled_user_ids(2, as_of=T + DAY + 1, grace_seconds=DAY) == set()


def test_grace_boundary_is_exclusive(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2, expires_at=T))

    assert repository.entitled_user_ids(2, as_of=T + DAY - 1, grace_seconds=DAY) == {5}
    assert repository.entitled_user_ids(2, as_of=T + DAY, grace_seconds=DAY) == set()


def test_entitlement_is_scoped_to_package(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2))
    repository.save_subscription(Subscription(user_id=6, package_id=3))

    assert repository.entitled_user_ids(2, as_of=T, grace_seconds=0) == {5}


def test_list_filters_by_user_and_package(repository):
    repository.save_subscription(Subscription(user_id=5, package_id=2))
    repository.save_subscription(Subscription(user_id=5, package_id=3))
    repository.save_subscription(Subscription(user_id=6, package_id=2))
    id_sort = SubscriptionSort(field=SortField.ID)

    by_user = repository.list_subscriptions(SubscriptionFilter(user_id=5), id_sort)
    by_both = repository.list_subscriptions(SubscriptionFilter(user_id=5, package_id=2), id_sort)

    assert [(sub.user_id, sub.package_id) for sub in by_user] == [(5, 2), (5, 3)]
    assert [(sub.user_id, sub.package_id) for sub in by_both] == [(5, 2)]
    assert repository.count_subscriptions(SubscriptionFilter(package_id=2)) == 2


def test_expiry_sort_places_never_expiring_last_ascending(repository):
    never = repository.save_subscription(Subscription(user_id=1, package_id=2, expires_at=0))
    late = repository.save_subscription(Subscription(user_id=2, package_id=2, expires_at=T + DAY))
    soon = repository.save_subscription(Subscription(user_id=3, package_id=2, expires_at=T))

    ascending = repository.list_subscriptions(
        SubscriptionFilter(), SubscriptionSort(field=SortField.EXPIRES_AT)
    )
    descending = repository.list_subscriptions(
        SubscriptionFilter(),
        SubscriptionSort(field=SortField.EXPIRES_AT, direction=SortDirection.DESC),
    )

    assert [sub.id for sub in ascending] == [soon.id, late.id, never.id]
    assert [sub.id for sub in descending] == [never.id, late.id, soon.id]


def test_expiry_sort_breaks_ties_by_id(repository):
    first = repository.save_subscription(Subscription(user_id=1, package_id=2, expires_at=T))
    second = repository.save_subscription(Subscription(user_id=2, package_id=2, expires_at=T))

    descending = repository.list_subscriptions(
        SubscriptionFilter(),
        SubscriptionSort(field=SortField.EXPIRES_AT, direction=SortDirection.DESC),
    )

    assert [sub.id for sub in descending] == [first.id, second.id]


def test_list_paginates_with_offset(repository):
    for user_id in range(1, 6):
        repository.save_subscription(Subscription(user_id=user_id, package_id=2))

    page = repository.list_subscriptions(
        SubscriptionFilter(), SubscriptionSort(field=SortField.ID), limit=2, offset=2
    )

    assert [sub.user_id for sub in page] == [3, 4]


def test_store_refuses_name_sorts(repository):
    with pytest.raises(ValueError):
        repository.list_subscriptions(SubscriptionFilter(), SubscriptionSort(field=SortField.USERNAME))


def test_record_transaction_only_once(repository):
    confirmation = PaymentConfirmation(transaction_id="txn-1", user_id=5, package_id=2, length_days=30)

    assert repository.has_transaction("txn-1") is False
    assert repository.record_transaction(confirmation) is True
    assert repository.record_transaction(confirmation) is False
    assert repository.has_transaction("txn-1") is True
