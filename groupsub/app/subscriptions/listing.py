"""Sortable, filterable, paginated subscription listings for administrators."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from ...config import MAX_PAGE_SIZE
from ..packages.catalog import PackageCatalog
from .models import (
    SortDirection,
    SortField,
    Subscription,
    SubscriptionFilter,
    SubscriptionListing,
    SubscriptionPage,
    SubscriptionSort,
)
from .service import SubscriptionRepository

DEFAULT_PAGE_SIZE = 25


class UserDirectory(Protocol):
    """Resolves forum user ids to display names."""

    def get_usernames(self, user_ids: Iterable[int]) -> Dict[int, str]:
        ...


def clamp_limit(limit: Optional[int], *, default: int = DEFAULT_PAGE_SIZE) -> int:
    if limit is None or limit <= 0:
        limit = default
    return min(MAX_PAGE_SIZE, limit)


class SubscriptionListingService:
    """Read-only admin view joining subscriptions to package and user names.

    Sorting by expiry is delegated to the store. Names live outside the store,
    so name sorts enrich the whole filtered set before slicing the page.
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        catalog: PackageCatalog,
        user_directory: UserDirectory,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._user_directory = user_directory
        self._default_page_size = clamp_limit(default_page_size)

    def list_subscriptions(
        self,
        *,
        filters: Optional[SubscriptionFilter] = None,
        sort: Optional[SubscriptionSort] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SubscriptionPage:
        filters = filters or SubscriptionFilter()
        sort = sort or SubscriptionSort()
        limit = clamp_limit(limit, default=self._default_page_size)
        offset = max(0, offset)

        if sort.field in {SortField.EXPIRES_AT, SortField.ID}:
            page = self._repository.list_subscriptions(filters, sort, limit=limit, offset=offset)
            items = self._enrich(page)
        else:
            everything = self._repository.list_subscriptions(
                filters, SubscriptionSort(field=SortField.ID, direction=SortDirection.ASC)
            )
            items = self._sort_by_name(self._enrich(everything), sort)[offset : offset + limit]

        total = self._repository.count_subscriptions(filters)
        return SubscriptionPage(items=items, total=total, limit=limit, offset=offset)

    def get_listing(self, subscription_id: int) -> SubscriptionListing:
        subscription = self._repository.get_subscription(subscription_id)
        return self._enrich([subscription])[0]

    def _enrich(self, subscriptions: Sequence[Subscription]) -> List[SubscriptionListing]:
        if not subscriptions:
            return []
        packages = self._catalog.get_packages(sub.package_id for sub in subscriptions)
        usernames = self._user_directory.get_usernames(sub.user_id for sub in subscriptions)
        listings = []
        for subscription in subscriptions:
            package = packages.get(subscription.package_id)
            listings.append(
                SubscriptionListing(
                    subscription=subscription,
                    package_name=package.name if package else None,
                    username=usernames.get(subscription.user_id),
                )
            )
        return listings

    @staticmethod
    def _sort_by_name(
        listings: List[SubscriptionListing],
        sort: SubscriptionSort,
    ) -> List[SubscriptionListing]:
        def name_of(listing: SubscriptionListing) -> str:
            if sort.field == SortField.PACKAGE_NAME:
                value = listing.package_name
            else:
                value = listing.username
            return (value or "").casefold()

        # Input arrives in id order and the sort is stable, so ties stay in id order.
        return sorted(listings, key=name_of, reverse=sort.descending)


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "SubscriptionListingService",
    "UserDirectory",
    "clamp_limit",
]
