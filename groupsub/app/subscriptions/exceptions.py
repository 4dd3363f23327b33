"""Errors raised by the subscription store and lifecycle manager."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


class SubscriptionError(Exception):
    """Base class for subscription domain failures."""

    code = "subscription_error"

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return {"error": self.code, "message": str(self)}


@dataclass(eq=False)
class SubscriptionValidationError(SubscriptionError, ValueError):
    """Rejected input, attributed to the offending field."""

    field: str
    message: str

    code = "invalid_field"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def payload(self) -> Mapping[str, Any]:
        return {"error": self.code, "field": self.field, "message": self.message}


@dataclass(eq=False)
class SubscriptionNotFoundError(SubscriptionError, LookupError):
    """No subscription exists with the requested identifier."""

    subscription_id: int

    code = "subscription_not_found"

    def __post_init__(self) -> None:
        super().__init__(f"Subscription {self.subscription_id} not found")

    def __str__(self) -> str:
        return f"Subscription {self.subscription_id} not found"


@dataclass(eq=False)
class SubscriptionConflictError(SubscriptionError):
    """A subscription already exists for the user and package pair."""

    user_id: int
    package_id: int

    code = "subscription_exists"

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"User {self.user_id} already holds a subscription to package {self.package_id}"

    @property
    def payload(self) -> Mapping[str, Any]:
        detail: Dict[str, Any] = {"error": self.code, "message": str(self)}
        detail.update({"user_id": self.user_id, "package_id": self.package_id})
        return detail


__all__ = [
    "SubscriptionConflictError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionValidationError",
]
