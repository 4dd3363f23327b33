"""API routes exposing subscription management and entitlement queries."""
from __future__ import annotations

import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from ... import app_context
from ..schemas.subscriptions import (
    EntitledUsersResponse,
    PackageListResponse,
    PackageResponse,
    PaymentConfirmationPayload,
    PayPalSettingsResponse,
    SubscriptionCreateRequest,
    SubscriptionDeleteResponse,
    SubscriptionListResponse,
    SubscriptionRenewRequest,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)
from ..services import subscriptions as subscription_services
from ..subscriptions import (
    SortDirection,
    SortField,
    SubscriptionConflictError,
    SubscriptionFilter,
    SubscriptionNotFoundError,
    SubscriptionSort,
    SubscriptionValidationError,
)


def _get_current_admin(admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> Any:
    admin = app_context.get_current_admin(admin_token=admin_token)
    if admin is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return admin


def _verify_payment_source(
    payment_secret: Optional[str] = Header(None, alias="X-Groupsub-Payment-Secret"),
) -> bool:
    expected = subscription_services.get_config().payment_secret
    if not expected or not payment_secret or not secrets.compare_digest(payment_secret, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Payment source not recognised")
    return True


def _to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, SubscriptionValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=dict(exc.payload))
    if isinstance(exc, SubscriptionConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=dict(exc.payload))
    if isinstance(exc, SubscriptionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=dict(exc.payload))
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


router = APIRouter(prefix="/api/groupsub", tags=["groupsub"])


@router.get("/subscriptions", response_model=SubscriptionListResponse)
def list_subscriptions(
    sort: SortField = Query(default=SortField.USERNAME),
    direction: SortDirection = Query(default=SortDirection.ASC),
    package_id: Optional[int] = Query(default=None, alias="packageId"),
    user_id: Optional[int] = Query(default=None, alias="userId"),
    limit: Optional[int] = Query(default=None),
    offset: int = Query(default=0, ge=0),
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionListResponse:
    service = subscription_services.get_listing_service()
    page = service.list_subscriptions(
        filters=SubscriptionFilter(user_id=user_id, package_id=package_id),
        sort=SubscriptionSort(field=sort, direction=direction),
        limit=limit,
        offset=offset,
    )
    return SubscriptionListResponse.from_page(page)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: int,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionResponse:
    service = subscription_services.get_listing_service()
    try:
        listing = service.get_listing(subscription_id)
    except SubscriptionNotFoundError as exc:
        raise _to_http_exception(exc) from exc
    return SubscriptionResponse.from_listing(listing)


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreateRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionResponse:
    manager = subscription_services.get_lifecycle_manager()
    try:
        subscription = manager.create(
            user_id=payload.user_id,
            package_id=payload.package_id,
            expires_at=payload.expires_at,
        )
    except (SubscriptionValidationError, SubscriptionConflictError) as exc:
        raise _to_http_exception(exc) from exc
    return SubscriptionResponse.from_subscription(subscription)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdateRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionResponse:
    manager = subscription_services.get_lifecycle_manager()
    try:
        subscription = manager.edit(subscription_id, payload.to_changes())
    except (SubscriptionValidationError, SubscriptionConflictError, SubscriptionNotFoundError) as exc:
        raise _to_http_exception(exc) from exc
    return SubscriptionResponse.from_subscription(subscription)


@router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionResponse)
def renew_subscription(
    subscription_id: int,
    payload: SubscriptionRenewRequest,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionResponse:
    manager = subscription_services.get_lifecycle_manager()
    try:
        subscription = manager.renew(subscription_id, length_days=payload.length_days)
    except (SubscriptionValidationError, SubscriptionNotFoundError) as exc:
        raise _to_http_exception(exc) from exc
    return SubscriptionResponse.from_subscription(subscription)


@router.delete("/subscriptions/{subscription_id}", response_model=SubscriptionDeleteResponse)
def cancel_subscription(
    subscription_id: int,
    *,
    current_admin=Depends(_get_current_admin),
) -> SubscriptionDeleteResponse:
    manager = subscription_services.get_lifecycle_manager()
    return SubscriptionDeleteResponse(deleted=manager.cancel(subscription_id))


@router.get("/packages/{package_id}/entitled-users", response_model=EntitledUsersResponse)
def list_entitled_users(
    package_id: int,
    *,
    current_admin=Depends(_get_current_admin),
) -> EntitledUsersResponse:
    manager = subscription_services.get_lifecycle_manager()
    user_ids = manager.entitled_user_ids(package_id)
    return EntitledUsersResponse(package_id=package_id, user_ids=sorted(user_ids))


@router.post("/payments/confirm", response_model=SubscriptionResponse)
def confirm_payment(
    payload: PaymentConfirmationPayload,
    *,
    payment_source=Depends(_verify_payment_source),
) -> SubscriptionResponse:
    manager = subscription_services.get_lifecycle_manager()
    try:
        subscription = manager.confirm_payment(payload.to_confirmation())
    except (SubscriptionValidationError, SubscriptionConflictError, LookupError) as exc:
        raise _to_http_exception(exc) from exc
    return SubscriptionResponse.from_subscription(subscription)


@router.get("/paypal/settings", response_model=PayPalSettingsResponse)
def paypal_settings() -> PayPalSettingsResponse:
    config = subscription_services.get_config()
    return PayPalSettingsResponse(
        sandbox=config.paypal_sandbox,
        business=config.paypal_business,
        currency=config.default_currency,
    )


@router.get("/packages", response_model=PackageListResponse)
def list_packages() -> PackageListResponse:
    catalog = subscription_services.get_package_catalog()
    config = subscription_services.get_config()
    return PackageListResponse(
        packages=[
            PackageResponse.from_definition(package, default_currency=config.default_currency)
            for package in catalog.list_packages()
        ]
    )
