"""Request-context core: handler chain flow, errors and per-request keys."""

from __future__ import annotations

import datetime
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .debug import handler_name as _handler_name
from .errors import Error, ErrorList, ErrorType

ABORT_INDEX = 127 // 2

_MISSING = object()

Handler = Callable[["BaseContext"], Any]


@dataclass(frozen=True)
class Param:
    """A single URL parameter: a key and its value."""

    key: str = ""
    value: str = ""


class BaseContext:
    """State shared by every handler that runs for one request."""

    def __init__(self, request: Any = None, response: Any = None, engine: Any = None):
        self.request = request
        self.response = response
        self.engine = engine
        self._lock = threading.RLock()
        self.params: list[Param] = []
        self.handlers: Optional[Sequence[Handler]] = None
        self.index = -1
        self.full_path = ""
        self.keys: dict[str, Any] = {}
        self.errors = ErrorList()
        self.accepted: Optional[list[str]] = None
        self._query_cache: Optional[dict[str, list[str]]] = None
        self._form_cache: Optional[dict[str, list[str]]] = None

    def reset(self) -> None:
        """Clear all per-request state so the context can be reused."""
        self.params = []
        self.handlers = None
        self.index = -1
        self.full_path = ""
        with self._lock:
            self.keys = {}
        self.errors = ErrorList()
        self.accepted = None
        self._query_cache = None
        self._form_cache = None

    # Handler chain

    def handler(self) -> Optional[Handler]:
        """Return the main (last) handler, or None."""
        return self.handlers[-1] if self.handlers else None

    def handler_name(self) -> str:
        """Return the dotted name of the main handler."""
        return _handler_name(self.handler())

    def handler_names(self) -> list[str]:
        """Return the dotted names of all handlers in the chain."""
        return [_handler_name(handler) for handler in self.handlers or ()]

    def next(self) -> None:
        """Run the pending handlers of the chain inside the calling one."""
        self.index += 1
        while self.index < len(self.handlers or ()):
            self.handlers[self.index](self)
            self.index += 1

    def is_aborted(self) -> bool:
        """Tell whether the chain was aborted."""
        return self.index >= ABORT_INDEX

    def abort(self) -> None:
        """Stop pending handlers from being called."""
        self.index = ABORT_INDEX

    # Errors

    def error(self, err: Any) -> Error:
        """Attach an error to the context and return it as an Error."""
        if err is None:
            raise TypeError("err is nil")
        parsed = err if isinstance(err, Error) else Error(err, ErrorType.PRIVATE)
        self.errors.append(parsed)
        return parsed

    # Keys

    def set(self, key: str, value: Any) -> None:
        """Store a value under key for this request."""
        with self._lock:
            self.keys[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default."""
        with self._lock:
            return self.keys.get(key, default)

    def must_get(self, key: str) -> Any:
        """Return the value stored under key; raise KeyError if absent."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(f'Key "{key}" does not exist')
        return value

    def _typed(self, key: str, accept: Callable[[Any], bool], zero: Any) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING or value is None or not accept(value):
            return zero
        return value

    def get_string(self, key: str) -> str:
        """Return the value as a string, or ''."""
        return self._typed(key, lambda v: isinstance(v, str), "")

    def get_bool(self, key: str) -> bool:
        """Return the value as a bool, or False."""
        return self._typed(key, lambda v: isinstance(v, bool), False)

    def get_int(self, key: str) -> int:
        """Return the value as an int, or 0."""
        return self._typed(key, lambda v: isinstance(v, int) and not isinstance(v, bool), 0)

    def get_float(self, key: str) -> float:
        """Return the value as a float, or 0.0."""
        return self._typed(key, lambda v: isinstance(v, float), 0.0)

    def get_datetime(self, key: str) -> Optional[datetime.datetime]:
        """Return the value as a datetime, or None."""
        return self._typed(key, lambda v: isinstance(v, datetime.datetime), None)

    def get_timedelta(self, key: str) -> datetime.timedelta:
        """Return the value as a timedelta, or a zero timedelta."""
        return self._typed(key, lambda v: isinstance(v, datetime.timedelta), datetime.timedelta(0))

    def get_list(self, key: str) -> list:
        """Return the value as a list, or an empty list."""
        return self._typed(key, lambda v: isinstance(v, list), [])

    def get_dict(self, key: str) -> dict:
        """Return the value as a dict, or an empty dict."""
        return self._typed(key, lambda v: isinstance(v, dict), {})

    # Input

    def param(self, key: str) -> str:
        """Return the value of the named URL parameter, or ''."""
        return next((p.value for p in self.params if p.key == key), "")

    def value(self, key: Any) -> Any:
        """Return the request for key 0, a stored value for a string key, else None."""
        if type(key) is int and key == 0:
            return self.request
        if isinstance(key, str):
            return self.get(key)
        return None