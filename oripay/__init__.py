"""Oripay Exchange marketing site, customer onboarding and back office."""

from __future__ import annotations

from typing import Any

from .documents import MemoryDocumentStore, SQLiteDocumentStore, resolve_database_path


def create_app(*args: Any, **kwargs: Any):
    """Factory for the web application around explicit backends."""

    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


def create_application(*args: Any, **kwargs: Any):
    """Factory for the web application configured from the environment."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "MemoryDocumentStore",
    "SQLiteDocumentStore",
    "create_app",
    "create_application",
    "resolve_database_path",
]
