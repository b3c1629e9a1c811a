"""Application factory wiring the configured backends into the web tier."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from fastapi import FastAPI

from .config import AppConfig
from .documents import SQLiteDocumentStore
from .identity import LocalIdentityProvider
from .sessions import SessionContext
from .web import create_app

logger = logging.getLogger("oripay.application")


def build_backends(database_path: Path) -> Tuple[SQLiteDocumentStore, LocalIdentityProvider]:
    """Open (and create if needed) the document store and identity tables."""

    store = SQLiteDocumentStore(database_path)
    store.initialize()
    identity = LocalIdentityProvider(database_path)
    identity.initialize()
    return store, identity


def create_application(config: Optional[AppConfig] = None) -> FastAPI:
    """Create the ASGI application from ``ORIPAY_*`` settings."""

    config = config or AppConfig.from_env()
    store, identity = build_backends(config.database_path)
    context = SessionContext(identity, ttl=config.session_ttl)

    logger.info("Serving %s from %s", config.site_name, config.database_path)
    app = create_app(
        store=store,
        identity=identity,
        session_secret=config.session_secret,
        context=context,
        secure_cookies=config.secure_cookies,
        trusted_proxies=config.trusted_proxies,
        site_name=config.site_name,
    )
    app.state.config = config
    return app


__all__ = ["build_backends", "create_application"]
