"""Domain models for group subscriptions."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import SubscriptionValidationError

NEVER_EXPIRES = 0


class SortField(str, Enum):
    """Columns the subscription listings can be ordered by."""

    USERNAME = "username"
    PACKAGE_NAME = "package_name"
    EXPIRES_AT = "expires_at"
    ID = "id"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Subscription(BaseModel):
    """One user's right to the groups granted by a package."""

    id: Optional[int] = None
    package_id: int = Field(default=0, ge=0)
    user_id: int = Field(default=0, ge=0)
    expires_at: int = Field(default=NEVER_EXPIRES, ge=0, description="Epoch seconds, 0 for never")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def never_expires(self) -> bool:
        return self.expires_at == NEVER_EXPIRES

    def is_entitled(self, as_of: int, grace_seconds: int = 0) -> bool:
        """Return whether the subscription still grants its groups at ``as_of``."""

        return self.never_expires or self.expires_at > as_of - grace_seconds

    def ensure_persistable(self) -> "Subscription":
        """Raise when the record cannot be written to a store."""

        validate_ids(user_id=self.user_id, package_id=self.package_id)
        validate_expires_at(self.expires_at)
        return self


class SubscriptionChanges(BaseModel):
    """Field-level edits applied to an existing subscription."""

    package_id: Optional[int] = None
    user_id: Optional[int] = None
    expires_at: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_empty(self) -> bool:
        return self.package_id is None and self.user_id is None and self.expires_at is None

    def apply(self, subscription: Subscription) -> Subscription:
        """Return a copy of ``subscription`` with the requested fields replaced.

        Every supplied value is validated before the copy is built, so a
        rejected edit never leaves a half-updated record behind.
        """

        update = self.model_dump(exclude_none=True)
        validate_ids(
            user_id=update.get("user_id", subscription.user_id),
            package_id=update.get("package_id", subscription.package_id),
        )
        validate_expires_at(update.get("expires_at", subscription.expires_at))
        return subscription.model_copy(update=update)


class SubscriptionFilter(BaseModel):
    """Restricts listings to a user and/or package; ``None`` or 0 means any."""

    user_id: Optional[int] = None
    package_id: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def matches(self, subscription: Subscription) -> bool:
        if self.user_id and subscription.user_id != self.user_id:
            return False
        if self.package_id and subscription.package_id != self.package_id:
            return False
        return True


class SubscriptionSort(BaseModel):
    field: SortField = SortField.USERNAME
    direction: SortDirection = SortDirection.ASC

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def descending(self) -> bool:
        return self.direction == SortDirection.DESC


class SubscriptionListing(BaseModel):
    """A subscription enriched with display names for the admin listing."""

    subscription: Subscription
    package_name: Optional[str] = None
    username: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionPage(BaseModel):
    items: list[SubscriptionListing]
    total: int
    limit: int
    offset: int

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentConfirmation(BaseModel):
    """A payment the billing provider has already confirmed and verified."""

    transaction_id: str = Field(min_length=1, max_length=64)
    user_id: int
    package_id: int
    length_days: int = Field(description="Subscription length purchased, 0 for never-ending")
    amount: Optional[str] = None
    currency: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def validate_ids(*, user_id: int, package_id: int) -> None:
    if user_id <= 0:
        raise SubscriptionValidationError("user_id", "A subscription requires a valid user")
    if package_id <= 0:
        raise SubscriptionValidationError("package_id", "A subscription requires a valid package")


def validate_expires_at(expires_at: int) -> None:
    if expires_at < 0:
        raise SubscriptionValidationError("expires_at", "Expiration must not be negative")


def expiry_sort_key(subscription: Subscription) -> tuple[int, int]:
    """Order by expiry with never-expiring subscriptions after every date."""

    return (1 if subscription.never_expires else 0, subscription.expires_at)


__all__ = [
    "NEVER_EXPIRES",
    "PaymentConfirmation",
    "SortDirection",
    "SortField",
    "Subscription",
    "SubscriptionChanges",
    "SubscriptionFilter",
    "SubscriptionListing",
    "SubscriptionPage",
    "SubscriptionSort",
    "expiry_sort_key",
    "validate_expires_at",
    "validate_ids",
]
