"""Link-scoped logging context.

While a link is up, the session id and the vehicle endpoint live in
context variables so every record logged on that link carries them,
whichever module emits it.
"""

from contextvars import ContextVar
from types import MappingProxyType
from typing import Any
from uuid import uuid4

_SESSION_ID_LENGTH = 12

_session_id: ContextVar[str] = ContextVar("session_id", default="")
_link_fields: ContextVar[MappingProxyType[str, Any]] = ContextVar(
    "link_fields", default=MappingProxyType({})
)


def get_session_id() -> str:
    return _session_id.get()


def set_session_id(value: str) -> None:
    _session_id.set(value)


def generate_session_id() -> str:
    """Start a new link session id in the current context and return it."""
    new_id = uuid4().hex[:_SESSION_ID_LENGTH]
    _session_id.set(new_id)
    return new_id


def get_extra_context() -> dict[str, Any]:
    return dict(_link_fields.get())


def set_extra_context(**fields: Any) -> None:
    """Add fields to every subsequent record in this context."""
    _link_fields.set(MappingProxyType({**_link_fields.get(), **fields}))


def bind_link_context(*, host: str, port: int) -> str:
    """Tag subsequent records with a fresh session id and the vehicle endpoint.

    Returns:
        The new session id.
    """
    _link_fields.set(MappingProxyType({"vehicle": f"{host}:{port}"}))
    return generate_session_id()


def clear_context() -> None:
    _session_id.set("")
    _link_fields.set(MappingProxyType({}))
