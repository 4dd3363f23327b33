"""Standalone FastAPI application serving the group subscription API."""
from __future__ import annotations

import logging
import os
import secrets
from types import SimpleNamespace
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI

from groupsub import app_context
from groupsub.app.routes.subscriptions import router as subscriptions_router
from groupsub.app.subscriptions.repository import ensure_schema
from groupsub.config import load_db_config

load_dotenv()

DB_CFG = load_db_config()
ADMIN_TOKEN = os.getenv("GROUPSUB_ADMIN_TOKEN", "")

logger = logging.getLogger("groupsub")


def get_conn():
    return psycopg2.connect(**DB_CFG)


def get_current_admin(*, admin_token: Optional[str] = None):
    """Resolve the caller from the shared admin token when no forum host is attached."""

    if not ADMIN_TOKEN or not admin_token:
        return None
    if not secrets.compare_digest(admin_token, ADMIN_TOKEN):
        logger.warning("Rejected admin request with an invalid token")
        return None
    return SimpleNamespace(id=0, is_admin=True)


app_context.configure(get_conn=get_conn, get_current_admin=get_current_admin)

app = FastAPI(title="Group Subscription API")
app.include_router(subscriptions_router)


@app.on_event("startup")
def bootstrap_schema() -> None:
    ensure_schema()
    logger.info("Group subscription tables ready")
