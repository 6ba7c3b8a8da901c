"""Renderers that write a response body in a given format."""

from __future__ import annotations

import base64
import dataclasses
import datetime
import json as _json
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, BinaryIO, Optional
from urllib.parse import urlsplit

import yaml

from .messages import Request, Response

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
JSONP_CONTENT_TYPE = "application/javascript; charset=utf-8"
ASCII_JSON_CONTENT_TYPE = "application/json"
XML_CONTENT_TYPE = "application/xml; charset=utf-8"
YAML_CONTENT_TYPE = "application/x-yaml; charset=utf-8"
PLAIN_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"
SSE_CONTENT_TYPE = "text/event-stream"

_HTML_ESCAPES = (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"))
_LINE_ESCAPES = (("\u2028", "\\u2028"), ("\u2029", "\\u2029"))
_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "<": "\\u003C",
    ">": "\\u003E",
    "&": "\\u0026",
    "=": "\\u003D",
}
_XML_ESCAPES = str.maketrans({
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
})
_HTML_ATTR_ESCAPES = str.maketrans({"&": "&amp;", "'": "&#39;", "<": "&lt;", ">": "&gt;", '"': "&#34;"})


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _plain(value: Any) -> Any:
    """Turn a value into plain data: mappings sorted, dataclasses in field order."""
    if _is_dataclass_instance(value):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(key): _plain(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return value


def _dumps(value: Any, *, escape_html: bool = True, ensure_ascii: bool = False,
           indent: Optional[int] = None) -> str:
    separators = (",", ": ") if indent else (",", ":")
    text = _json.dumps(_plain(value), ensure_ascii=ensure_ascii, indent=indent,
                       separators=separators, allow_nan=False)
    escapes = _LINE_ESCAPES + (_HTML_ESCAPES if escape_html else ())
    for raw, escaped in escapes:
        text = text.replace(raw, escaped)
    return text


def _write_content_type(response: Response, value: str) -> None:
    if not response.headers.get_all("Content-Type"):
        response.headers.set("Content-Type", value)


def _js_escape(text: str) -> str:
    out = []
    for ch in text:
        if ch in _JS_ESCAPES:
            out.append(_JS_ESCAPES[ch])
        elif ord(ch) < 0x20 or not ch.isprintable():
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


@dataclass
class JSON:
    """Compact JSON with HTML characters escaped."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        response.write(_dumps(self.data))

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, JSON_CONTENT_TYPE)


@dataclass
class IndentedJSON:
    """JSON indented by four spaces."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        response.write(_dumps(self.data, indent=4))

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, JSON_CONTENT_TYPE)


@dataclass
class SecureJSON:
    """JSON whose top-level arrays are prefixed to defeat JSON hijacking."""

    data: Any
    prefix: str = "while(1);"

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        payload = _dumps(self.data)
        if payload.startswith("["):
            payload = self.prefix + payload
        response.write(payload)

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, JSON_CONTENT_TYPE)


@dataclass
class JsonpJSON:
    """JSON wrapped in a call to a JavaScript callback."""

    callback: str
    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        payload = _dumps(self.data)
        if not self.callback:
            response.write(payload)
            return
        response.write(f"{_js_escape(self.callback)}({payload});")

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, JSONP_CONTENT_TYPE)


@dataclass
class PureJSON:
    """JSON without HTML escaping, ending with a newline."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        response.write(_dumps(self.data, escape_html=False) + "\n")

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, JSON_CONTENT_TYPE)


@dataclass
class AsciiJSON:
    """JSON with every non-ASCII character escaped."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        response.write(_dumps(self.data, ensure_ascii=True))

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, ASCII_JSON_CONTENT_TYPE)


def _xml_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode("utf-8", "replace")
    return str(value).translate(_XML_ESCAPES)


def _xml_element(name: str, value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return "".join(_xml_element(name, item) for item in value)
    if isinstance(value, Mapping):
        inner = "".join(_xml_element(str(key), item) for key, item in value.items())
    elif _is_dataclass_instance(value):
        inner = "".join(_xml_element(f.name, getattr(value, f.name)) for f in dataclasses.fields(value))
    else:
        inner = _xml_text(value)
    return f"<{name}>{inner}</{name}>"


@dataclass
class XML:
    """XML; a mapping becomes a <map> element with one child per key."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        data = self.data
        if isinstance(data, Mapping):
            text = _xml_element("map", data)
        elif isinstance(data, (list, tuple)):
            text = "".join(_xml_element(type(item).__name__, item) for item in data)
        else:
            text = _xml_element(type(data).__name__, data)
        response.write(text)

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, XML_CONTENT_TYPE)


@dataclass
class YAML:
    """YAML in block style."""

    data: Any

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        text = yaml.safe_dump(_plain(self.data), default_flow_style=False,
                              allow_unicode=True, sort_keys=False)
        response.write(text)

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, YAML_CONTENT_TYPE)


@dataclass
class String:
    """Plain text, %-formatted when arguments are given."""

    format: str
    data: tuple = ()

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        text = self.format % tuple(self.data) if self.data else self.format
        response.write(text)

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, PLAIN_CONTENT_TYPE)


@dataclass
class Data:
    """Raw bytes with a given content type."""

    content_type: str
    data: bytes

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        response.write(bytes(self.data))

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, self.content_type)


@dataclass
class Reader:
    """A body copied from a readable stream, with extra headers."""

    content_type: str
    content_length: int
    reader: BinaryIO
    headers: Optional[dict[str, str]] = None
    chunk_size: int = field(default=32 * 1024, repr=False)

    def render(self, response: Response) -> None:
        extra = dict(self.headers or {})
        if self.content_length >= 0:
            extra["Content-Length"] = str(self.content_length)
        self.write_content_type(response)
        for key, value in extra.items():
            if not response.headers.get(key):
                response.headers.set(key, value)
        while True:
            chunk = self.reader.read(self.chunk_size)
            if not chunk:
                break
            response.write(chunk)

    def write_content_type(self, response: Response) -> None:
        _write_content_type(response, self.content_type)


def _clean_path(path: str) -> str:
    cleaned = posixpath.normpath(path) if path else "."
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _resolve_location(location: str, request_path: str) -> str:
    try:
        parts = urlsplit(location)
    except ValueError:
        return location
    if parts.scheme or parts.netloc:
        return location
    old_path = request_path or "/"
    if not location.startswith("/"):
        location = old_path[: old_path.rfind("/") + 1] + location
    location, mark, query = location.partition("?")
    trailing = location.endswith("/")
    cleaned = _clean_path(location)
    if trailing and not cleaned.endswith("/"):
        cleaned += "/"
    return cleaned + mark + query


@dataclass
class Redirect:
    """A redirect to a location; only 201 and 3xx codes are allowed."""

    code: int
    location: str
    request: Optional[Request] = None

    def _check_code(self) -> None:
        if (self.code < 300 or self.code > 308) and self.code != 201:
            raise ValueError(f"Cannot redirect with status code {self.code}")

    def render(self, response: Response) -> None:
        self._check_code()
        method = self.request.method if self.request is not None else "GET"
        path = self.request.path if self.request is not None else "/"
        location = _resolve_location(self.location, path)
        response.headers.set("Location", location)
        if method in ("GET", "HEAD") and not response.headers.get_all("Content-Type"):
            response.headers.set("Content-Type", HTML_CONTENT_TYPE)
        response.write_header(self.code)
        if method == "GET":
            try:
                phrase = HTTPStatus(self.code).phrase
            except ValueError:
                phrase = ""
            response.write(f'<a href="{location.translate(_HTML_ATTR_ESCAPES)}">{phrase}</a>.\n')

    def write_content_type(self, response: Response) -> None:
        """Set no content type up front; only reject a code that cannot redirect."""
        self._check_code()


def _escape_field(value: str) -> str:
    return value.replace("\n", "\\n").replace("\r", "\\r")


def _sse_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class Event:
    """A Server-Sent Event."""

    event: str = ""
    data: Any = None
    id: str = ""
    retry: int = 0

    def render(self, response: Response) -> None:
        self.write_content_type(response)
        parts = []
        if self.id:
            parts.append(f"id:{_escape_field(self.id)}\n")
        if self.event:
            parts.append(f"event:{_escape_field(self.event)}\n")
        if self.retry > 0:
            parts.append(f"retry:{self.retry}\n")
        data = self.data
        if isinstance(data, (Mapping, list, tuple)) or _is_dataclass_instance(data):
            parts.append(f"data:{_dumps(data)}\n\n")
        else:
            parts.append("data:" + _sse_scalar(data).replace("\n", "\ndata:") + "\n\n")
        response.write("".join(parts))

    def write_content_type(self, response: Response) -> None:
        response.headers.set("Content-Type", SSE_CONTENT_TYPE)
        if "Cache-Control" not in response.headers:
            response.headers.set("Cache-Control", "no-cache")