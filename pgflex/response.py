"""JSON responses and error-to-status mapping for the admin API."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Iterator

from pgflex.admin import NoRowsError

log = logging.getLogger(__name__)

_CONFLICT_CODES = {"42710", "23505"}
_BAD_REQUEST_CODES = {"23503", "23502"}


@dataclass
class CreateUserRequest:
    username: str = ""
    password: str = ""
    superuser: bool = False
    database: str = field(default="", metadata={"json": "databases"})


@dataclass
class CreateDatabaseRequest:
    name: str = ""


@dataclass
class Response:
    result: Any = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.result is not None:
            out["result"] = self.result
        if self.error:
            out["error"] = self.error
        return out


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def _to_jsonable(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        out = {}
        for f in dataclasses.fields(obj):
            value = getattr(obj, f.name)
            if f.metadata.get("omitempty") and _is_empty(value):
                continue
            out[f.metadata.get("json", f.name)] = value
        return out
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _error_chain(err: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _sqlstate(err: BaseException) -> str | None:
    for attr in ("sqlstate", "pgcode"):
        code = getattr(err, attr, None)
        if code:
            return str(code)
    return None


def http_status(err: BaseException | None) -> int:
    """Map an error to the HTTP status the API answers with."""
    if err is None:
        return HTTPStatus.OK
    chain = list(_error_chain(err))
    if any(isinstance(e, NoRowsError) for e in chain):
        return HTTPStatus.NOT_FOUND
    for e in chain:
        code = _sqlstate(e)
        if code is None:
            continue
        if code in _CONFLICT_CODES:
            return HTTPStatus.CONFLICT
        if code in _BAD_REQUEST_CODES:
            return HTTPStatus.BAD_REQUEST
        return HTTPStatus.INTERNAL_SERVER_ERROR
    return HTTPStatus.INTERNAL_SERVER_ERROR


def render_json(
    data: Any, status: int = HTTPStatus.OK
) -> tuple[int, dict[str, str], bytes]:
    """Return ``(status, headers, body)`` for a JSON response."""
    try:
        body = json.dumps(_to_jsonable_root(data), default=_to_jsonable) + "\n"
    except (TypeError, ValueError) as exc:
        log.warning("failed to write json response: %s", exc)
        body = ""
    return int(status), {"Content-Type": "application/json"}, body.encode("utf-8")


def _to_jsonable_root(data: Any) -> Any:
    if callable(getattr(data, "to_dict", None)) or (
        dataclasses.is_dataclass(data) and not isinstance(data, type)
    ):
        return _to_jsonable(data)
    return data


def render_error(err: BaseException) -> tuple[int, dict[str, str], bytes]:
    """Render an error as ``{"error": ...}`` with its mapped status."""
    return render_json({"error": str(err)}, http_status(err))