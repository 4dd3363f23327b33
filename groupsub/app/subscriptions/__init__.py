"""Subscription domain package: entitlement store, lifecycle and listings."""

from .exceptions import (
    SubscriptionConflictError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionValidationError,
)
from .listing import SubscriptionListingService, UserDirectory, clamp_limit
from .models import (
    NEVER_EXPIRES,
    PaymentConfirmation,
    SortDirection,
    SortField,
    Subscription,
    SubscriptionChanges,
    SubscriptionFilter,
    SubscriptionListing,
    SubscriptionPage,
    SubscriptionSort,
)
from .repository import InMemorySubscriptionRepository, PostgresSubscriptionRepository
from .service import GroupMembership, SubscriptionLifecycleManager, SubscriptionRepository

__all__ = [
    "GroupMembership",
    "InMemorySubscriptionRepository",
    "NEVER_EXPIRES",
    "PaymentConfirmation",
    "PostgresSubscriptionRepository",
    "SortDirection",
    "SortField",
    "Subscription",
    "SubscriptionChanges",
    "SubscriptionConflictError",
    "SubscriptionError",
    "SubscriptionFilter",
    "SubscriptionLifecycleManager",
    "SubscriptionListing",
    "SubscriptionListingService",
    "SubscriptionNotFoundError",
    "SubscriptionPage",
    "SubscriptionRepository",
    "SubscriptionSort",
    "SubscriptionValidationError",
    "UserDirectory",
    "clamp_limit",
]
