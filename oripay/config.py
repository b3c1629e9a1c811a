"""Configuration for the Oripay web service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .documents import resolve_database_path
from .schemas import (
    ABOUT,
    ADMINS,
    ANNOUNCEMENTS,
    COUNTRIES,
    CURRENCIES,
    FOOTER,
    HOMEPAGE,
    SERVICES,
    SETTINGS,
    USERS,
)

SEEDABLE_COLLECTIONS = frozenset(
    {HOMEPAGE, ABOUT, FOOTER, SERVICES, ANNOUNCEMENTS, SETTINGS, CURRENCIES, COUNTRIES}
)
_PROTECTED_COLLECTIONS = frozenset({USERS, ADMINS})


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _trusted_proxy_hosts(raw: Optional[str]) -> List[str] | str:
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


@dataclass(frozen=True)
class AppConfig:
    """Settings resolved from ``ORIPAY_*`` environment variables."""

    session_secret: str
    database_path: Path
    secure_cookies: bool = False
    session_ttl: timedelta = timedelta(hours=8)
    trusted_proxies: List[str] | str = "*"
    site_name: str = "Oripay Exchange"

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if environ is None else environ

        secret = (env.get("ORIPAY_SESSION_SECRET") or "").strip()
        if not secret:
            raise RuntimeError("ORIPAY_SESSION_SECRET must be configured to serve the site")

        raw_ttl = env.get("ORIPAY_SESSION_TTL_HOURS")
        try:
            ttl_hours = float(raw_ttl) if raw_ttl else 8.0
        except ValueError as exc:
            raise RuntimeError(f"ORIPAY_SESSION_TTL_HOURS must be a number, got {raw_ttl!r}") from exc
        if ttl_hours <= 0:
            raise RuntimeError("ORIPAY_SESSION_TTL_HOURS must be positive")

        return AppConfig(
            session_secret=secret,
            database_path=resolve_database_path(env.get("ORIPAY_DB_PATH")),
            secure_cookies=_env_flag(env.get("ORIPAY_SESSION_SECURE"), False),
            session_ttl=timedelta(hours=ttl_hours),
            trusted_proxies=_trusted_proxy_hosts(env.get("ORIPAY_TRUSTED_PROXIES")),
            site_name=(env.get("ORIPAY_SITE_NAME") or "").strip() or "Oripay Exchange",
        )


def load_content_seed(path: Path) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Load a YAML bundle of ``collection -> {document id -> fields}``."""

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Seed file must contain a mapping of collections")

    bundle: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for collection, documents in raw.items():
        if collection in _PROTECTED_COLLECTIONS:
            raise ValueError(f"Collection '{collection}' cannot be seeded from a file")
        if collection not in SEEDABLE_COLLECTIONS:
            raise ValueError(f"Unknown collection '{collection}' in seed file")
        if not isinstance(documents, dict):
            raise ValueError(f"Collection '{collection}' must map document ids to fields")
        for doc_id, fields in documents.items():
            if not isinstance(fields, dict):
                raise ValueError(f"Document '{collection}/{doc_id}' must be a mapping")
        bundle[collection] = {str(doc_id): dict(fields) for doc_id, fields in documents.items()}
    return bundle


__all__ = ["AppConfig", "SEEDABLE_COLLECTIONS", "load_content_seed"]
