"""Lifecycle manager coordinating subscription records and group grants."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Set

from ...config import SECONDS_PER_DAY
from ..packages.catalog import PackageCatalog
from .exceptions import SubscriptionValidationError
from .models import (
    NEVER_EXPIRES,
    PaymentConfirmation,
    Subscription,
    SubscriptionChanges,
    SubscriptionFilter,
    SubscriptionSort,
    validate_expires_at,
    validate_ids,
)

logger = logging.getLogger(__name__)


class SubscriptionRepository(Protocol):
    """Persistence operations required by the lifecycle manager."""

    def get_subscription(self, subscription_id: int) -> Subscription:
        ...

    def find_subscription(self, *, user_id: int, package_id: int) -> Optional[Subscription]:
        ...

    def list_subscriptions(
        self,
        filters: SubscriptionFilter,
        sort: SubscriptionSort,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Subscription]:
        ...

    def count_subscriptions(self, filters: SubscriptionFilter) -> int:
        ...

    def save_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def delete_subscription(self, subscription_id: int) -> bool:
        ...

    def entitled_user_ids(self, package_id: int, *, as_of: int, grace_seconds: int) -> Set[int]:
        ...

    def has_transaction(self, transaction_id: str) -> bool:
        ...

    def record_transaction(self, confirmation: PaymentConfirmation) -> bool:
        ...


class GroupMembership(Protocol):
    """Host forum operations adding and removing users from groups."""

    def grant(self, group_id: int, user_id: int) -> None:
        ...

    def revoke(self, group_id: int, user_id: int) -> None:
        ...


def _system_clock() -> int:
    return int(time.time())


@dataclass
class SubscriptionLifecycleManager:
    """Creates, edits, renews and cancels subscriptions.

    Group membership is granted once, when a subscription is created. Edits,
    renewals and cancellations leave memberships alone; a periodic sweep
    comparing :meth:`entitled_user_ids_for_group` against actual membership is
    expected to revoke groups from users who are no longer entitled.
    """

    repository: SubscriptionRepository
    catalog: PackageCatalog
    membership: GroupMembership
    clock: Callable[[], int] = field(default=_system_clock)
    grace_seconds: int = 0

    def __post_init__(self) -> None:
        if self.grace_seconds < 0:
            raise ValueError("grace_seconds must be >= 0")

    def get(self, subscription_id: int) -> Subscription:
        return self.repository.get_subscription(subscription_id)

    def create(self, *, user_id: int, package_id: int, expires_at: int = NEVER_EXPIRES) -> Subscription:
        validate_ids(user_id=user_id, package_id=package_id)
        self._validate_new_expiry(expires_at)

        stored = self.repository.save_subscription(
            Subscription(user_id=user_id, package_id=package_id, expires_at=expires_at)
        )
        logger.info(
            "Subscription %s created user=%s package=%s expires_at=%s",
            stored.id,
            stored.user_id,
            stored.package_id,
            stored.expires_at,
        )
        self._grant_groups(stored)
        return stored

    def edit(self, subscription_id: int, changes: SubscriptionChanges) -> Subscription:
        current = self.repository.get_subscription(subscription_id)
        if changes.is_empty:
            return current
        if changes.expires_at is not None and changes.expires_at != current.expires_at:
            self._validate_new_expiry(changes.expires_at)
        updated = changes.apply(current)
        if updated == current:
            return current

        stored = self.repository.save_subscription(updated)
        logger.info(
            "Subscription %s edited user=%s package=%s expires_at=%s",
            stored.id,
            stored.user_id,
            stored.package_id,
            stored.expires_at,
        )
        return stored

    def renew(self, subscription_id: int, *, length_days: int) -> Subscription:
        """Extend a subscription by ``length_days``; 0 makes it never-ending."""

        current = self.repository.get_subscription(subscription_id)
        expires_at = self._extended_expiry(current.expires_at, length_days)
        if expires_at == current.expires_at:
            return current

        stored = self.repository.save_subscription(current.model_copy(update={"expires_at": expires_at}))
        logger.info(
            "Subscription %s renewed by %s days expires_at=%s",
            stored.id,
            length_days,
            stored.expires_at,
        )
        return stored

    def cancel(self, subscription_id: int) -> bool:
        deleted = self.repository.delete_subscription(subscription_id)
        if deleted:
            logger.info("Subscription %s cancelled", subscription_id)
        return deleted

    def confirm_payment(self, confirmation: PaymentConfirmation) -> Subscription:
        """Apply a verified payment by renewing or creating the subscription."""

        validate_ids(user_id=confirmation.user_id, package_id=confirmation.package_id)
        if confirmation.length_days < 0:
            raise SubscriptionValidationError("length_days", "Subscription length must not be negative")

        existing = self.repository.find_subscription(
            user_id=confirmation.user_id, package_id=confirmation.package_id
        )
        if self.repository.has_transaction(confirmation.transaction_id):
            logger.info("Payment %s already processed", confirmation.transaction_id)
            if existing is None:
                raise LookupError(
                    f"Payment {confirmation.transaction_id} was processed but its subscription was cancelled"
                )
            return existing

        if existing is not None:
            subscription = self.renew(existing.id, length_days=confirmation.length_days)
        else:
            if confirmation.length_days == 0:
                expires_at = NEVER_EXPIRES
            else:
                expires_at = self.clock() + confirmation.length_days * SECONDS_PER_DAY
            subscription = self.create(
                user_id=confirmation.user_id,
                package_id=confirmation.package_id,
                expires_at=expires_at,
            )

        # A transaction is recorded only once its subscription write has succeeded.
        if not self.repository.record_transaction(confirmation):
            logger.warning("Payment %s was recorded by a concurrent request", confirmation.transaction_id)
        logger.info(
            "Payment %s confirmed user=%s package=%s length_days=%s",
            confirmation.transaction_id,
            confirmation.user_id,
            confirmation.package_id,
            confirmation.length_days,
        )
        return subscription

    def entitled_user_ids(self, package_id: int) -> Set[int]:
        return self.repository.entitled_user_ids(
            package_id, as_of=self.clock(), grace_seconds=self.grace_seconds
        )

    def is_entitled(self, user_id: int, package_id: int) -> bool:
        return user_id in self.entitled_user_ids(package_id)

    def entitled_user_ids_for_group(self, group_id: int) -> Set[int]:
        """Users holding any package that grants ``group_id``."""

        user_ids: Set[int] = set()
        for package in self.catalog.packages_granting(group_id):
            user_ids |= self.entitled_user_ids(package.package_id)
        return user_ids

    def _validate_new_expiry(self, expires_at: int) -> None:
        validate_expires_at(expires_at)
        if expires_at != NEVER_EXPIRES and expires_at < self.clock():
            raise SubscriptionValidationError("expires_at", "The expiration date entered was in the past")

    def _extended_expiry(self, expires_at: int, length_days: int) -> int:
        if length_days < 0:
            raise SubscriptionValidationError("length_days", "Subscription length must not be negative")
        if length_days == 0 or expires_at == NEVER_EXPIRES:
            return NEVER_EXPIRES
        # Lapsed subscriptions restart from now rather than from the old expiry.
        return max(self.clock(), expires_at) + length_days * SECONDS_PER_DAY

    def _grant_groups(self, subscription: Subscription) -> None:
        package = self.catalog.get_package(subscription.package_id)
        if package is None:
            logger.warning(
                "Subscription %s references unknown package %s; no groups granted",
                subscription.id,
                subscription.package_id,
            )
            return
        if not package.enabled:
            logger.warning(
                "Subscription %s references disabled package %s; no groups granted",
                subscription.id,
                package.package_id,
            )
            return

        for group_id in package.group_ids:
            try:
                self.membership.grant(group_id, subscription.user_id)
            except Exception:
                logger.exception(
                    "Failed to add user %s to group %s for subscription %s",
                    subscription.user_id,
                    group_id,
                    subscription.id,
                )
            else:
                logger.debug("Added user %s to group %s", subscription.user_id, group_id)


__all__ = [
    "GroupMembership",
    "SubscriptionLifecycleManager",
    "SubscriptionRepository",
]
