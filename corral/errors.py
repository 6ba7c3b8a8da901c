"""Errors attached to a request context, with JSON views of them."""

from __future__ import annotations

import dataclasses
import json as _json
from collections.abc import Mapping
from enum import IntFlag
from typing import Any, Optional

_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class ErrorType(IntFlag):
    """Bit flags that classify an :class:`Error`."""

    PRIVATE = 1 << 0
    PUBLIC = 1 << 1
    RENDER = 1 << 62
    BIND = 1 << 63
    ANY = (1 << 64) - 1


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _prepare(value: Any) -> Any:
    """Turn a value into plain JSON data, with mapping keys sorted."""
    if isinstance(value, Error):
        return _prepare(value.json())
    if _is_dataclass_instance(value):
        return {
            field.name: _prepare(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, Mapping):
        return {
            str(key): _prepare(value[key])
            for key in sorted(value, key=str)
        }
    if isinstance(value, (list, tuple)):
        return [_prepare(item) for item in value]
    return value


def _marshal(value: Any) -> str:
    """Serialise compactly, escaping HTML-sensitive characters."""
    text = _json.dumps(_prepare(value), separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


class Error(Exception):
    """An error with a type and optional metadata."""

    def __init__(self, err: Any, type: ErrorType = ErrorType.PRIVATE, meta: Any = None):
        super().__init__(err)
        self.err = err
        self.type = type
        self.meta = meta
        if isinstance(err, BaseException):
            self.__cause__ = err

    def __str__(self) -> str:
        return str(self.err)

    def __repr__(self) -> str:
        return f"Error(err={self.err!r}, type={self.type!r}, meta={self.meta!r})"

    def set_type(self, flags: ErrorType) -> "Error":
        """Set the error's type and return the error."""
        self.type = flags
        return self

    def set_meta(self, data: Any) -> "Error":
        """Set the error's metadata and return the error."""
        self.meta = data
        return self

    def json(self) -> Any:
        """Return the JSON-ready view of this error."""
        data: dict[str, Any] = {}
        meta = self.meta
        if meta is not None:
            if _is_dataclass_instance(meta):
                return meta
            if isinstance(meta, Mapping):
                data.update((str(key), value) for key, value in meta.items())
            else:
                data["meta"] = meta
        data.setdefault("error", str(self))
        return data

    def to_json(self) -> str:
        """Serialise :meth:`json` to a JSON string."""
        return _marshal(self.json())

    def is_type(self, flags: ErrorType) -> bool:
        """Tell whether the error has any of the given flags."""
        return (int(self.type) & int(flags)) != 0


class ErrorList(list):
    """A list of :class:`Error` objects collected during a request."""

    def by_type(self, typ: ErrorType) -> "ErrorList":
        """Return a copy holding only the errors of the given type."""
        if not self:
            return ErrorList()
        if typ == ErrorType.ANY:
            return ErrorList(self)
        return ErrorList(err for err in self if err.is_type(typ))

    def last(self) -> Optional[Error]:
        """Return the last error, or None when there is none."""
        return self[-1] if self else None

    def errors(self) -> list[str]:
        """Return the messages of all errors."""
        return [str(err) for err in self]

    def json(self) -> Any:
        """Return None, one error's view, or a list of views."""
        if not self:
            return None
        if len(self) == 1:
            return self[0].json()
        return [err.json() for err in self]

    def to_json(self) -> str:
        """Serialise :meth:`json` to a JSON string."""
        return _marshal(self.json())

    def __str__(self) -> str:
        lines = []
        for number, err in enumerate(self, start=1):
            lines.append(f"Error #{number:02d}: {err.err}\n")
            if err.meta is not None:
                lines.append(f"     Meta: {err.meta}\n")
        return "".join(lines)