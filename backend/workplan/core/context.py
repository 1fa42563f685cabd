"""Per-request context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from uuid import uuid4

REQUEST_ID_HEADER = "X-Request-Id"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def new_request_id() -> str:
    return str(uuid4())


@contextmanager
def bind_request_id(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind ``request_id`` (or a fresh one) for log records and traces inside the block."""
    resolved = request_id or new_request_id()
    token = request_id_ctx_var.set(resolved)
    try:
        yield resolved
    finally:
        request_id_ctx_var.reset(token)
