"""Package definitions and the lookups used to resolve them."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection

from ..db import managed_connection


@dataclass(frozen=True)
class PackagePrice:
    """One purchasable length of a package; ``length_days`` 0 never ends."""

    price: Decimal
    length_days: int = 0

    @property
    def never_expires(self) -> bool:
        return self.length_days == 0


@dataclass(frozen=True)
class PackageDefinition:
    """A purchasable package and the groups it grants to subscribers."""

    package_id: int
    name: str
    group_ids: Tuple[int, ...] = ()
    ident: str = ""
    enabled: bool = True
    description: str = ""
    currency: Optional[str] = None
    prices: Tuple[PackagePrice, ...] = ()
    display_order: int = 0

    def grants(self, group_id: int) -> bool:
        return group_id in self.group_ids


class PackageCatalog(Protocol):
    """Read-only access to package names, prices and granted groups."""

    def get_package(self, package_id: int) -> Optional[PackageDefinition]:
        ...

    def get_packages(self, package_ids: Iterable[int]) -> Dict[int, PackageDefinition]:
        ...

    def packages_granting(self, group_id: int) -> List[PackageDefinition]:
        ...

    def list_packages(self) -> List[PackageDefinition]:
        ...


def _display_key(package: PackageDefinition) -> Tuple[int, int]:
    return package.display_order, package.package_id


@dataclass
class InMemoryPackageCatalog:
    """Static catalog suitable for tests and local development."""

    packages: Dict[int, PackageDefinition] = field(default_factory=dict)

    def add(self, package: PackageDefinition) -> None:
        self.packages[package.package_id] = package

    def get_package(self, package_id: int) -> Optional[PackageDefinition]:
        return self.packages.get(package_id)

    def get_packages(self, package_ids: Iterable[int]) -> Dict[int, PackageDefinition]:
        return {
            package_id: self.packages[package_id]
            for package_id in set(package_ids)
            if package_id in self.packages
        }

    def packages_granting(self, group_id: int) -> List[PackageDefinition]:
        return sorted(
            (package for package in self.packages.values() if package.grants(group_id)),
            key=lambda package: package.package_id,
        )

    def list_packages(self) -> List[PackageDefinition]:
        """Enabled packages in display order."""

        return sorted(
            (package for package in self.packages.values() if package.enabled),
            key=_display_key,
        )


def _row_to_package(row: dict) -> PackageDefinition:
    prices = tuple(
        PackagePrice(price=Decimal(str(price["price"])), length_days=int(price["length_days"]))
        for price in row.get("prices") or ()
    )
    return PackageDefinition(
        package_id=int(row["package_id"]),
        name=row["name"],
        group_ids=tuple(int(group_id) for group_id in row["group_ids"] or ()),
        ident=row.get("ident") or "",
        enabled=bool(row.get("enabled", True)),
        description=row.get("description") or "",
        currency=row.get("currency") or None,
        prices=prices,
        display_order=int(row.get("display_order") or 0),
    )


class PostgresPackageCatalog:
    """Catalog reading the extension's package tables."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def _fetch(self, where: str, params: tuple) -> List[PackageDefinition]:
        with managed_connection(self._conn) as (connection, _):
            with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                cursor.execute(
                    f"""
                    SELECT p.package_id,
                           p.ident,
                           p.name,
                           p.description,
                           p.currency,
                           p.display_order,
                           p.enabled,
                           COALESCE(
                               ARRAY_AGG(g.group_id ORDER BY g.group_id)
                                   FILTER (WHERE g.group_id IS NOT NULL),
                               '{{}}'
                           ) AS group_ids,
                           (
                               SELECT COALESCE(
                                   JSON_AGG(
                                       JSON_BUILD_OBJECT('price', pr.price::text, 'length_days', pr.length_days)
                                       ORDER BY pr.length_days, pr.price_id
                                   ),
                                   '[]'
                               )
                               FROM groupsub_package_prices AS pr
                               WHERE pr.package_id = p.package_id
                           ) AS prices
                    FROM groupsub_packages AS p
                    LEFT JOIN groupsub_package_groups AS g ON g.package_id = p.package_id
                    {where}
                    GROUP BY p.package_id, p.ident, p.name, p.description, p.currency,
                             p.display_order, p.enabled
                    ORDER BY p.display_order, p.package_id
                    """,
                    params,
                )
                rows = cursor.fetchall() or []
        return [_row_to_package(row) for row in rows]

    def get_package(self, package_id: int) -> Optional[PackageDefinition]:
        packages = self._fetch("WHERE p.package_id = %s", (package_id,))
        return packages[0] if packages else None

    def get_packages(self, package_ids: Iterable[int]) -> Dict[int, PackageDefinition]:
        ids = sorted(set(package_ids))
        if not ids:
            return {}
        packages = self._fetch("WHERE p.package_id = ANY(%s)", (ids,))
        return {package.package_id: package for package in packages}

    def packages_granting(self, group_id: int) -> List[PackageDefinition]:
        return self._fetch(
            """
            WHERE p.package_id IN (
                SELECT package_id FROM groupsub_package_groups WHERE group_id = %s
            )
            """,
            (group_id,),
        )

    def list_packages(self) -> List[PackageDefinition]:
        """Enabled packages in display order."""

        return self._fetch("WHERE p.enabled", ())


__all__ = [
    "InMemoryPackageCatalog",
    "PackageCatalog",
    "PackageDefinition",
    "PackagePrice",
    "PostgresPackageCatalog",
]
