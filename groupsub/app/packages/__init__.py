"""Package catalog lookups used by the subscription services."""

from .catalog import (
    InMemoryPackageCatalog,
    PackageCatalog,
    PackageDefinition,
    PackagePrice,
    PostgresPackageCatalog,
)

__all__ = [
    "InMemoryPackageCatalog",
    "PackageCatalog",
    "PackageDefinition",
    "PackagePrice",
    "PostgresPackageCatalog",
]
