"""Application wiring for the subscription services."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Iterable, Optional

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ...config import GroupSubConfig, load_groupsub_config
from ..db import managed_connection
from ..packages import PackageCatalog, PostgresPackageCatalog
from ..subscriptions import (
    GroupMembership,
    PostgresSubscriptionRepository,
    SubscriptionLifecycleManager,
    SubscriptionListingService,
    UserDirectory,
)


logger = logging.getLogger("groupsub")


class PostgresGroupMembership(GroupMembership):
    """Adds and removes users through the forum's ``user_group`` table."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def grant(self, group_id: int, user_id: int) -> None:
        with managed_connection(self._conn) as (connection, _):
            with connection.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO user_group (group_id, user_id, user_pending)
                    SELECT %s, %s, 0
                    WHERE NOT EXISTS (
                        SELECT 1 FROM user_group WHERE group_id = %s AND user_id = %s
                    )
                    """,
                    (group_id, user_id, group_id, user_id),
                )
        logger.debug("Granted group %s to user %s", group_id, user_id)

    def revoke(self, group_id: int, user_id: int) -> None:
        with managed_connection(self._conn) as (connection, _):
            with connection.cursor() as cursor:
                cursor.execute(
                    "DELETE FROM user_group WHERE group_id = %s AND user_id = %s",
                    (group_id, user_id),
                )
        logger.debug("Revoked group %s from user %s", group_id, user_id)


class PostgresUserDirectory(UserDirectory):
    """Looks up usernames in the forum's ``users`` table."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_usernames(self, user_ids: Iterable[int]) -> Dict[int, str]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        with managed_connection(self._conn) as (connection, _):
            with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(
                    "SELECT user_id, username FROM users WHERE user_id = ANY(%s)",
                    (ids,),
                )
                rows = cursor.fetchall() or []
        return {int(row["user_id"]): row["username"] for row in rows}


@lru_cache(maxsize=1)
def get_config() -> GroupSubConfig:
    return load_groupsub_config()


@lru_cache(maxsize=1)
def get_package_catalog() -> PackageCatalog:
    return PostgresPackageCatalog()


@lru_cache(maxsize=1)
def get_lifecycle_manager() -> SubscriptionLifecycleManager:
    config = get_config()
    manager = SubscriptionLifecycleManager(
        repository=PostgresSubscriptionRepository(),
        catalog=get_package_catalog(),
        membership=PostgresGroupMembership(),
        grace_seconds=config.grace_seconds,
    )
    logger.info("Subscription lifecycle manager ready grace_days=%s", config.grace_days)
    return manager


@lru_cache(maxsize=1)
def get_listing_service() -> SubscriptionListingService:
    config = get_config()
    return SubscriptionListingService(
        PostgresSubscriptionRepository(),
        get_package_catalog(),
        PostgresUserDirectory(),
        default_page_size=config.page_size,
    )


__all__ = [
    "PostgresGroupMembership",
    "PostgresUserDirectory",
    "get_config",
    "get_lifecycle_manager",
    "get_listing_service",
    "get_package_catalog",
]
