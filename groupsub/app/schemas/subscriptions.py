"""API schemas for subscription endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..packages import PackageDefinition, PackagePrice
from ..subscriptions import (
    NEVER_EXPIRES,
    PaymentConfirmation,
    Subscription,
    SubscriptionChanges,
    SubscriptionListing,
    SubscriptionPage,
)


class SubscriptionResponse(BaseModel):
    id: int
    package_id: int = Field(alias="packageId")
    user_id: int = Field(alias="userId")
    expires_at: int = Field(alias="expiresAt")
    never_expires: bool = Field(alias="neverExpires")
    package_name: Optional[str] = Field(alias="packageName", default=None)
    username: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            package_id=subscription.package_id,
            user_id=subscription.user_id,
            expires_at=subscription.expires_at,
            never_expires=subscription.never_expires,
        )

    @classmethod
    def from_listing(cls, listing: SubscriptionListing) -> "SubscriptionResponse":
        response = cls.from_subscription(listing.subscription)
        return response.model_copy(
            update={"package_name": listing.package_name, "username": listing.username}
        )


class SubscriptionListResponse(BaseModel):
    items: list[SubscriptionResponse]
    total: int
    limit: int
    offset: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_page(cls, page: SubscriptionPage) -> "SubscriptionListResponse":
        return cls(
            items=[SubscriptionResponse.from_listing(item) for item in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )


class SubscriptionCreateRequest(BaseModel):
    user_id: int = Field(alias="userId")
    package_id: int = Field(alias="packageId")
    expires_at: int = Field(alias="expiresAt", default=NEVER_EXPIRES)

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionUpdateRequest(BaseModel):
    user_id: Optional[int] = Field(alias="userId", default=None)
    package_id: Optional[int] = Field(alias="packageId", default=None)
    expires_at: Optional[int] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_changes(self) -> SubscriptionChanges:
        return SubscriptionChanges(
            user_id=self.user_id,
            package_id=self.package_id,
            expires_at=self.expires_at,
        )


class SubscriptionRenewRequest(BaseModel):
    length_days: int = Field(alias="lengthDays")

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionDeleteResponse(BaseModel):
    deleted: bool

    model_config = ConfigDict(populate_by_name=True)


class EntitledUsersResponse(BaseModel):
    package_id: int = Field(alias="packageId")
    user_ids: list[int] = Field(alias="userIds")

    model_config = ConfigDict(populate_by_name=True)


class PaymentConfirmationPayload(BaseModel):
    transaction_id: str = Field(alias="transactionId", min_length=1, max_length=64)
    user_id: int = Field(alias="userId")
    package_id: int = Field(alias="packageId")
    length_days: int = Field(alias="lengthDays")
    amount: Optional[str] = Field(default=None, max_length=32)
    currency: Optional[str] = Field(default=None, max_length=3)

    model_config = ConfigDict(populate_by_name=True)

    def to_confirmation(self) -> PaymentConfirmation:
        return PaymentConfirmation(
            transaction_id=self.transaction_id,
            user_id=self.user_id,
            package_id=self.package_id,
            length_days=self.length_days,
            amount=self.amount,
            currency=self.currency.upper() if self.currency else None,
        )


class PayPalSettingsResponse(BaseModel):
    sandbox: bool
    business: str
    currency: str

    model_config = ConfigDict(populate_by_name=True)


class PackagePriceResponse(BaseModel):
    price: str
    length_days: int = Field(alias="lengthDays")
    never_expires: bool = Field(alias="neverExpires")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_price(cls, price: PackagePrice) -> "PackagePriceResponse":
        return cls(
            price=f"{price.price:.2f}",
            length_days=price.length_days,
            never_expires=price.never_expires,
        )


class PackageResponse(BaseModel):
    id: int
    ident: str
    name: str
    description: str
    currency: str
    prices: list[PackagePriceResponse]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_definition(cls, package: PackageDefinition, *, default_currency: str) -> "PackageResponse":
        return cls(
            id=package.package_id,
            ident=package.ident,
            name=package.name,
            description=package.description,
            currency=package.currency or default_currency,
            prices=[PackagePriceResponse.from_price(price) for price in package.prices],
        )


class PackageListResponse(BaseModel):
    packages: list[PackageResponse]

    model_config = ConfigDict(populate_by_name=True)
