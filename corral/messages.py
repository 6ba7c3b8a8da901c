"""HTTP request and response objects used by a request context."""

from __future__ import annotations

import email.message
import email.parser
import io
import string
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import parse_qs, urlsplit, urlunsplit

DEFAULT_MAX_MEMORY = 32 << 20

_FORM_METHODS = frozenset({"POST", "PUT", "PATCH"})
_TOKEN_CHARS = frozenset(string.ascii_letters + string.digits + "!#$%&'*+-.^_`|~")


class MultipartError(ValueError):
    """Raised when a multipart body cannot be parsed."""


class NotMultipartError(MultipartError):
    """Raised when a request body is not multipart/form-data."""


class NoCookieError(LookupError):
    """Raised when a request carries no cookie of the asked name."""


class MissingFileError(LookupError):
    """Raised when a multipart form holds no file under the asked name."""


class SameSite(Enum):
    """Values of a cookie's SameSite attribute."""

    DEFAULT = ""
    LAX = "Lax"
    STRICT = "Strict"
    NONE = "None"


def _canonical(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


class Headers:
    """A case-insensitive multi-valued header map."""

    def __init__(self, initial: Union[Mapping[str, Any], Iterable[tuple[str, Any]], None] = None):
        self._items: dict[str, list[str]] = {}
        if initial is None:
            return
        pairs = initial.items() if isinstance(initial, Mapping) else initial
        for key, value in pairs:
            if isinstance(value, (list, tuple)):
                for item in value:
                    self.add(key, item)
            else:
                self.add(key, value)

    def get(self, key: str, default: str = "") -> str:
        """Return the first value of a header, or default."""
        values = self._items.get(_canonical(key))
        return values[0] if values else default

    def get_all(self, key: str) -> list[str]:
        """Return every value of a header."""
        return list(self._items.get(_canonical(key), ()))

    def set(self, key: str, value: Any) -> None:
        """Replace a header's values with a single value."""
        self._items[_canonical(key)] = [str(value)]

    def add(self, key: str, value: Any) -> None:
        """Append a value to a header."""
        self._items.setdefault(_canonical(key), []).append(str(value))

    def delete(self, key: str) -> None:
        """Remove a header entirely."""
        self._items.pop(_canonical(key), None)

    def items(self) -> list[tuple[str, list[str]]]:
        return [(key, list(values)) for key, values in self._items.items()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and bool(self._items.get(_canonical(key)))

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


@dataclass
class UploadedFile:
    """A file part of a multipart form, held in memory or on disk."""

    filename: str
    headers: Headers = field(default_factory=Headers)
    size: int = 0
    content: Optional[bytes] = None
    path: Optional[str] = None

    def open(self) -> BinaryIO:
        """Open the file's content for reading."""
        if self.content is not None:
            return io.BytesIO(self.content)
        if self.path is not None:
            return open(self.path, "rb")
        raise FileNotFoundError(f"no data for uploaded file {self.filename!r}")


@dataclass
class MultipartForm:
    """The values and files of a parsed multipart form."""

    value: dict[str, list[str]] = field(default_factory=dict)
    file: dict[str, list[UploadedFile]] = field(default_factory=dict)


def _media_type(header: str) -> tuple[str, dict[str, str]]:
    if not header.strip():
        return "", {}
    message = email.message.Message()
    message["Content-Type"] = header
    params = {key.lower(): value for key, value in message.get_params(failobj=[])[1:]}
    return message.get_content_type(), params


def _read_multipart(raw: bytes, boundary: str, max_memory: int) -> MultipartForm:
    delimiter = b"--" + boundary.encode("latin-1")
    if delimiter + b"--" not in raw:
        raise MultipartError("multipart: NextPart: EOF")
    head = f'Content-Type: multipart/form-data; boundary="{boundary}"\r\n\r\n'.encode("latin-1")
    message = email.parser.BytesParser().parsebytes(head + raw)
    if not message.is_multipart():
        raise MultipartError("multipart: malformed body")
    form = MultipartForm()
    budget = max_memory
    for part in message.get_payload():
        name = part.get_param("name", header="content-disposition")
        if not name:
            continue
        payload = part.get_payload(decode=True) or b""
        filename = part.get_filename()
        if filename is None:
            form.value.setdefault(name, []).append(payload.decode("utf-8", "replace"))
            continue
        headers = Headers(part.items())
        if len(payload) > budget:
            with tempfile.NamedTemporaryFile(prefix="multipart-", delete=False) as handle:
                handle.write(payload)
            upload = UploadedFile(filename, headers, len(payload), path=handle.name)
        else:
            budget -= len(payload)
            upload = UploadedFile(filename, headers, len(payload), content=payload)
        form.file.setdefault(name, []).append(upload)
    return form


class Request:
    """An incoming HTTP request."""

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        headers: Union[Headers, Mapping[str, Any], None] = None,
        body: Union[bytes, str, BinaryIO, None] = b"",
        remote_addr: str = "",
    ):
        self.method = method
        parts = urlsplit(url)
        self.scheme = parts.scheme
        self.host = parts.netloc
        self.path = parts.path
        self.raw_query = parts.query
        self.fragment = parts.fragment
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        if body is None:
            body = b""
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.body: BinaryIO = io.BytesIO(bytes(body)) if isinstance(body, (bytes, bytearray)) else body
        self.remote_addr = remote_addr
        self.multipart_form: Optional[MultipartForm] = None
        self._post_form: Optional[dict[str, list[str]]] = None

    @property
    def url(self) -> str:
        return urlunsplit((self.scheme, self.host, self.path, self.raw_query, self.fragment))

    def query(self) -> dict[str, list[str]]:
        """Parse the URL query into lists of values per key."""
        return parse_qs(self.raw_query, keep_blank_values=True, separator="&")

    def read_body(self) -> bytes:
        """Read what is left of the body."""
        return self.body.read()

    def _parse_form(self) -> None:
        if self._post_form is not None:
            return
        self._post_form = {}
        if self.method not in _FORM_METHODS:
            return
        media_type, _ = _media_type(self.headers.get("Content-Type"))
        if media_type == "application/x-www-form-urlencoded":
            text = self.read_body().decode("utf-8", "replace")
            self._post_form.update(parse_qs(text, keep_blank_values=True, separator="&"))

    def post_form(self) -> dict[str, list[str]]:
        """Return the form values sent in the body."""
        self._parse_form()
        assert self._post_form is not None
        return self._post_form

    def parse_multipart_form(self, max_memory: int = DEFAULT_MAX_MEMORY) -> MultipartForm:
        """Parse a multipart/form-data body; larger files go to disk."""
        self._parse_form()
        if self.multipart_form is not None:
            return self.multipart_form
        media_type, params = _media_type(self.headers.get("Content-Type"))
        if media_type != "multipart/form-data":
            raise NotMultipartError("request Content-Type isn't multipart/form-data")
        boundary = params.get("boundary")
        if not boundary:
            raise MultipartError("no multipart boundary param in Content-Type")
        form = _read_multipart(self.read_body(), boundary, max_memory)
        post_form = self.post_form()
        for key, values in form.value.items():
            post_form.setdefault(key, []).extend(values)
        self.multipart_form = form
        return form

    def cookie(self, name: str) -> str:
        """Return the raw value of the named request cookie."""
        for line in self.headers.get_all("Cookie"):
            for part in line.split(";"):
                key, _, value = part.strip().partition("=")
                if key != name:
                    continue
                if len(value) > 1 and value[0] == value[-1] == '"':
                    value = value[1:-1]
                return value
        raise NoCookieError("named cookie not present")


class Response:
    """An outgoing response that collects its status, headers and body."""

    def __init__(self) -> None:
        self.headers = Headers()
        self.status = 200
        self.code: Optional[int] = None
        self.body = bytearray()
        self.size = -1
        self.client_gone = False

    @property
    def written(self) -> bool:
        return self.size != -1

    def write_header(self, code: int) -> None:
        """Record the status code to send; ignored once headers are sent."""
        if code > 0 and not self.written:
            self.status = code

    def write_header_now(self) -> None:
        """Send the headers with the recorded status if not yet sent."""
        if not self.written:
            self.size = 0
            self.code = self.status

    def write(self, data: Union[bytes, bytearray, str]) -> int:
        """Append data to the body, sending headers first."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.write_header_now()
        self.body += data
        self.size += len(data)
        return len(data)

    def flush(self) -> None:
        """Send the headers; the body is already held."""
        self.write_header_now()


def _sanitize_cookie_value(value: str) -> str:
    kept = "".join(ch for ch in value if 0x20 <= ord(ch) < 0x7F and ch not in '";\\')
    if " " in kept or "," in kept:
        return f'"{kept}"'
    return kept


def format_set_cookie(
    name: str,
    value: str,
    max_age: int = 0,
    path: str = "",
    domain: str = "",
    same_site: SameSite = SameSite.DEFAULT,
    secure: bool = False,
    http_only: bool = False,
) -> str:
    """Build the value of a Set-Cookie header."""
    if not name or not set(name) <= _TOKEN_CHARS:
        raise ValueError(f"invalid cookie name {name!r}")
    parts = [f"{name}={_sanitize_cookie_value(value)}"]
    if path:
        parts.append("Path=" + "".join(ch for ch in path if 0x20 <= ord(ch) < 0x7F and ch != ";"))
    if domain:
        parts.append("Domain=" + (domain[1:] if domain.startswith(".") else domain))
    if max_age > 0:
        parts.append(f"Max-Age={max_age}")
    elif max_age < 0:
        parts.append("Max-Age=0")
    if http_only:
        parts.append("HttpOnly")
    if secure:
        parts.append("Secure")
    if same_site is not SameSite.DEFAULT:
        parts.append(f"SameSite={same_site.value}")
    return "; ".join(parts)