"""Helpers shared by the public, customer and admin views."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from fastapi import Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from starlette.datastructures import FormData, UploadFile

from .documents import DocumentStoreError
from .guard import GuardDecision, GuardState
from .models import Upload
from .schemas import DocumentValidationError

logger = logging.getLogger("oripay.web")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

SESSION_KEY = "session_id"

GENERIC_LOAD_ERROR = "Some content could not be loaded. Showing defaults."

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def build_templates(site_name: str) -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["site_name"] = site_name
    return templates


def flash(request: Request, message: str, *, category: str = "info", title: Optional[str] = None) -> None:
    messages = request.session.get("flash_messages")
    if not isinstance(messages, list):
        messages = []
    entry = {"message": message, "category": category}
    if title:
        entry["title"] = title
    messages.append(entry)
    request.session["flash_messages"] = messages


def consume_flash(request: Request) -> List[Dict[str, str]]:
    messages = request.session.pop("flash_messages", [])
    if isinstance(messages, list):
        return messages
    return []


def session_id_of(request: Request) -> Optional[str]:
    value = request.session.get(SESSION_KEY)
    return value if isinstance(value, str) and value else None


def redirect(request: Request, route_name: str, **path_params: Any) -> RedirectResponse:
    return RedirectResponse(
        request.url_for(route_name, **path_params),
        status_code=status.HTTP_303_SEE_OTHER,
    )


def render(
    templates: Jinja2Templates,
    request: Request,
    name: str,
    context: Optional[Dict[str, Any]] = None,
    *,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    payload: Dict[str, Any] = {"messages": consume_flash(request)}
    if context:
        payload.update(context)
    return templates.TemplateResponse(request, name, payload, status_code=status_code)


def guard_response(templates: Jinja2Templates, request: Request, decision: GuardDecision) -> Optional[Response]:
    """Translate a non-authorized guard decision into an HTTP response."""

    if decision.allowed:
        return None
    if decision.state is GuardState.CHECKING:
        response = templates.TemplateResponse(
            request,
            "loading.html",
            {"messages": []},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        response.headers["Retry-After"] = "1"
        response.headers["Cache-Control"] = "no-store"
        return response
    return RedirectResponse(decision.redirect_to or "/login", status_code=status.HTTP_303_SEE_OTHER)


async def load_or_default(
    request: Request,
    loader: Callable[[], Awaitable[T]],
    default: Callable[[], T],
    *,
    what: str,
    notify: bool = True,
) -> T:
    """Run ``loader``; on a store or schema failure log, notify and fall back."""

    try:
        return await loader()
    except DocumentStoreError:
        logger.exception("Failed to load %s", what)
    except DocumentValidationError as exc:
        logger.warning("Rejected malformed %s: %s", what, exc)
    if notify:
        flash(request, GENERIC_LOAD_ERROR, category="warning")
    return default()


async def read_upload(value: Any) -> Optional[Upload]:
    if not isinstance(value, UploadFile):
        return None
    data = await value.read()
    if not data:
        return None
    return Upload(filename=value.filename or "upload", content_type=value.content_type, data=data)


def form_text(form: FormData, name: str) -> str:
    value = form.get(name)
    return value.strip() if isinstance(value, str) else ""


def form_flag(form: FormData, name: str) -> bool:
    value = form.get(name)
    return isinstance(value, str) and value.strip().lower() in {"on", "true", "1", "yes"}


def model_from_form(model: Type[M], form: FormData) -> M:
    """Build a flat model from form fields named after its snake_case fields.

    Boolean fields are read as checkboxes; absent non-boolean fields keep the
    model default.
    """

    values: Dict[str, Any] = {}
    for name, info in model.model_fields.items():
        if info.annotation is bool:
            values[name] = form_flag(form, name)
            continue
        raw = form.get(name)
        if isinstance(raw, str):
            values[name] = raw.strip()
    return model.model_validate(values)


__all__ = [
    "GENERIC_LOAD_ERROR",
    "SESSION_KEY",
    "build_templates",
    "consume_flash",
    "flash",
    "form_flag",
    "form_text",
    "guard_response",
    "load_or_default",
    "model_from_form",
    "read_upload",
    "redirect",
    "render",
    "session_id_of",
]
