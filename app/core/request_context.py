"""
Request context for tracking request_id across the request and its build.
"""
import uuid
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Get the current request ID ("" outside a request)."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID, generating one when not provided."""
    rid = request_id or uuid.uuid4().hex
    request_id_var.set(rid)
    return rid
