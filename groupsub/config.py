"""Configuration helpers for the group subscription extension."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

SECONDS_PER_DAY = 86400
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class GroupSubConfig:
    """Settings shared by the subscription services and routes."""

    grace_days: int
    page_size: int
    paypal_sandbox: bool
    paypal_live_business: str
    paypal_sandbox_business: str
    default_currency: str
    payment_secret: str = ""

    @property
    def grace_seconds(self) -> int:
        return self.grace_days * SECONDS_PER_DAY

    @property
    def paypal_business(self) -> str:
        """Business address receiving payments for the active PayPal mode."""

        if self.paypal_sandbox:
            return self.paypal_sandbox_business
        return self.paypal_live_business


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def load_groupsub_config(env: Optional[Mapping[str, str]] = None) -> GroupSubConfig:
    """Load :class:`GroupSubConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    grace_days = _to_int(env_mapping.get("GROUPSUB_GRACE_DAYS"), default=0)
    if grace_days < 0:
        raise ValueError("GROUPSUB_GRACE_DAYS must be non-negative")

    page_size = _to_int(env_mapping.get("GROUPSUB_PAGE_SIZE"), default=25)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))

    currency = (env_mapping.get("GROUPSUB_DEFAULT_CURRENCY") or "USD").strip().upper() or "USD"

    return GroupSubConfig(
        grace_days=grace_days,
        page_size=page_size,
        paypal_sandbox=_to_bool(env_mapping.get("GROUPSUB_PP_SANDBOX"), default=False),
        paypal_live_business=(env_mapping.get("GROUPSUB_PP_BUSINESS") or "").strip(),
        paypal_sandbox_business=(env_mapping.get("GROUPSUB_PP_SB_BUSINESS") or "").strip(),
        default_currency=currency,
        payment_secret=(env_mapping.get("GROUPSUB_PAYMENT_SECRET") or "").strip(),
    )


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_db_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return keyword arguments for :func:`psycopg2.connect`."""

    env_mapping = os.environ if env is None else env
    return dict(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "forum_db"),
        user=env_mapping.get("DB_USER", "forum_user"),
        password=env_mapping.get("DB_PASSWORD", "forum_pass"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )


__all__ = [
    "GroupSubConfig",
    "MAX_PAGE_SIZE",
    "SECONDS_PER_DAY",
    "load_db_config",
    "load_groupsub_config",
]
