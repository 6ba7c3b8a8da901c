"""The request context handed to every handler: input, output and negotiation."""

from __future__ import annotations

import ipaddress
import mimetypes
import os
import shutil
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Optional, Union
from urllib.parse import quote, quote_plus, unquote_plus

from .basecontext import ABORT_INDEX, BaseContext
from .debug import debug_print
from .errors import Error
from .fs import DirFile
from .messages import (
    DEFAULT_MAX_MEMORY,
    MissingFileError,
    MultipartError,
    MultipartForm,
    NotMultipartError,
    Request,
    Response,
    SameSite,
    UploadedFile,
    format_set_cookie,
)
from .responses import (
    JSON,
    XML,
    YAML,
    AsciiJSON,
    Data,
    Event,
    IndentedJSON,
    JsonpJSON,
    PureJSON,
    Reader,
    Redirect,
    SecureJSON,
    String,
)

MIME_JSON = "application/json"
MIME_HTML = "text/html"
MIME_XML = "application/xml"
MIME_XML2 = "text/xml"
MIME_PLAIN = "text/plain"
MIME_POST_FORM = "application/x-www-form-urlencoded"
MIME_MULTIPART_POST_FORM = "multipart/form-data"
MIME_YAML = "application/x-yaml"

_DEFAULTS = {
    "app_engine": False,
    "forwarded_by_client_ip": True,
    "remote_ip_headers": ["X-Forwarded-For", "X-Real-IP"],
    "trusted_proxies": ["0.0.0.0/0"],
    "max_multipart_memory": DEFAULT_MAX_MEMORY,
    "secure_json_prefix": "while(1);",
    "html_render": None,
}

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def body_allowed_for_status(status: int) -> bool:
    """Tell whether a response with this status may carry a body."""
    if 100 <= status <= 199:
        return False
    return status not in (204, 304)


def _parse_ip(text: str) -> Optional[IPAddress]:
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def validate_header(header: str) -> Optional[str]:
    """Return the first address of a comma list if every item is an IP, else None."""
    if not header:
        return None
    items = [item.strip() for item in header.split(",")]
    if any(_parse_ip(item) is None for item in items):
        return None
    return items[0]


def filter_flags(content: str) -> str:
    """Cut a header value at its first space or semicolon."""
    for position, char in enumerate(content):
        if char in " ;":
            return content[:position]
    return content


def parse_accept(accept_header: str) -> list[str]:
    """Split an Accept header into media ranges, dropping parameters."""
    out = []
    for part in accept_header.split(","):
        cut = part.find(";")
        if cut > 0:
            part = part[:cut]
        part = part.strip()
        if part:
            out.append(part)
    return out


def _trusted_networks(proxies: Optional[list[str]]) -> Optional[list[IPNetwork]]:
    """Parse trusted proxies; stop at the first invalid entry, keeping the rest parsed."""
    if proxies is None:
        return None
    networks: list[IPNetwork] = []
    for proxy in proxies:
        if "/" not in proxy:
            ip = _parse_ip(proxy)
            if ip is None:
                return networks
            proxy = f"{ip}/{32 if ip.version == 4 else 128}"
        try:
            networks.append(ipaddress.ip_network(proxy, strict=False))
        except ValueError:
            return networks
    return networks


def _split_host_port(address: str) -> Optional[str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or address[end + 1:end + 2] != ":":
            return None
        return address[1:end]
    host, colon, _ = address.rpartition(":")
    if not colon or ":" in host:
        return None
    return host


@dataclass
class Negotiate:
    """Data offered for each format during content negotiation."""

    offered: list[str] = field(default_factory=list)
    html_name: str = ""
    html_data: Any = None
    json_data: Any = None
    xml_data: Any = None
    yaml_data: Any = None
    data: Any = None


def _choose(custom: Any, fallback: Any) -> Any:
    return fallback if custom is None else custom


class Context(BaseContext):
    """Everything a handler needs to read a request and write a response."""

    def __init__(self, request: Optional[Request] = None, response: Optional[Response] = None,
                 engine: Any = None):
        super().__init__(request, Response() if response is None else response, engine)
        self.same_site = SameSite.DEFAULT

    def _setting(self, name: str) -> Any:
        return getattr(self.engine, name, _DEFAULTS[name])

    def copy(self) -> "Context":
        """Return a copy safe to use outside the request's scope."""
        duplicate = Context(self.request, None, self.engine)
        duplicate.response = None
        duplicate.index = ABORT_INDEX
        duplicate.handlers = None
        duplicate.keys = dict(self.keys)
        duplicate.params = list(self.params)
        duplicate.full_path = self.full_path
        return duplicate

    # Flow control

    def abort_with_status(self, code: int) -> None:
        """Abort and send the headers with the given status."""
        self.status(code)
        self.response.write_header_now()
        self.abort()

    def abort_with_status_json(self, code: int, obj: Any) -> None:
        """Abort and render obj as JSON."""
        self.abort()
        self.json(code, obj)

    def abort_with_error(self, code: int, err: Any) -> Error:
        """Abort with a status and attach err to the context."""
        self.abort_with_status(code)
        return self.error(err)

    # Query string

    def _queries(self) -> dict[str, list[str]]:
        if self._query_cache is None:
            self._query_cache = self.request.query() if self.request is not None else {}
        return self._query_cache

    def query(self, key: str) -> str:
        """Return the first query value for key, or ''."""
        value = self.get_query(key)
        return "" if value is None else value

    def default_query(self, key: str, default: str) -> str:
        """Return the first query value for key, or default when absent."""
        value = self.get_query(key)
        return default if value is None else value

    def get_query(self, key: str) -> Optional[str]:
        """Return the first query value for key, or None when absent."""
        values = self.query_array(key)
        return values[0] if values else None

    def query_array(self, key: str) -> list[str]:
        """Return every query value for key."""
        return list(self._queries().get(key) or [])

    def query_map(self, key: str) -> dict[str, str]:
        """Return the entries key[sub]=value of the query as {sub: value}."""
        return self._bracketed(self._queries(), key)

    # Body form

    def _forms(self) -> dict[str, list[str]]:
        if self._form_cache is None:
            request = self.request
            try:
                request.parse_multipart_form(self._setting("max_multipart_memory"))
            except NotMultipartError:
                pass
            except MultipartError as exc:
                debug_print("error on parse multipart form array: %s", exc)
            self._form_cache = request.post_form()
        return self._form_cache

    def post_form(self, key: str) -> str:
        """Return the first form value for key, or ''."""
        value = self.get_post_form(key)
        return "" if value is None else value

    def default_post_form(self, key: str, default: str) -> str:
        """Return the first form value for key, or default when absent."""
        value = self.get_post_form(key)
        return default if value is None else value

    def get_post_form(self, key: str) -> Optional[str]:
        """Return the first form value for key, or None when absent."""
        values = self.post_form_array(key)
        return values[0] if values else None

    def post_form_array(self, key: str) -> list[str]:
        """Return every form value for key."""
        return list(self._forms().get(key) or [])

    def post_form_map(self, key: str) -> dict[str, str]:
        """Return the form entries key[sub]=value as {sub: value}."""
        return self._bracketed(self._forms(), key)

    @staticmethod
    def _bracketed(values: dict[str, list[str]], key: str) -> dict[str, str]:
        result = {}
        for name, items in values.items():
            open_at = name.find("[")
            if open_at < 1 or name[:open_at] != key:
                continue
            rest = name[open_at + 1:]
            close_at = rest.find("]")
            if close_at >= 1 and items:
                result[rest[:close_at]] = items[0]
        return result

    def form_file(self, name: str) -> UploadedFile:
        """Return the first uploaded file for name."""
        form = self.request.multipart_form
        if form is None:
            form = self.request.parse_multipart_form(self._setting("max_multipart_memory"))
        files = form.file.get(name)
        if not files:
            raise MissingFileError("http: no such file")
        return files[0]

    def multipart_form(self) -> MultipartForm:
        """Return the parsed multipart form, files included."""
        return self.request.parse_multipart_form(self._setting("max_multipart_memory"))

    def save_uploaded_file(self, file: UploadedFile, dst: Union[str, os.PathLike]) -> None:
        """Copy an uploaded file to dst."""
        with file.open() as source, open(dst, "wb") as target:
            shutil.copyfileobj(source, target)

    # Client and headers

    def client_ip(self) -> str:
        """Return the best guess at the client's IP address."""
        if self._setting("app_engine"):
            address = self.get_header("X-Appengine-Remote-Addr")
            if address:
                return address
        remote, trusted = self.remote_ip()
        if remote is None:
            return ""
        headers = self._setting("remote_ip_headers")
        if trusted and self._setting("forwarded_by_client_ip") and headers is not None:
            for header_name in headers:
                ip = validate_header(self.get_header(header_name))
                if ip is not None:
                    return ip
        return str(remote)

    def remote_ip(self) -> tuple[Optional[IPAddress], bool]:
        """Return the peer address and whether it is a trusted proxy."""
        host = _split_host_port(self.request.remote_addr.strip())
        if host is None:
            return None, False
        remote = _parse_ip(host)
        if remote is None:
            return None, False
        networks = _trusted_networks(self._setting("trusted_proxies")) or []
        trusted = any(net.version == remote.version and remote in net for net in networks)
        return remote, trusted

    def content_type(self) -> str:
        """Return the request's media type without parameters."""
        return filter_flags(self.get_header("Content-Type"))

    def is_websocket(self) -> bool:
        """Tell whether the request asks for a websocket upgrade."""
        return ("upgrade" in self.get_header("Connection").lower()
                and self.get_header("Upgrade").lower() == "websocket")

    def get_header(self, key: str) -> str:
        """Return a request header, or ''."""
        return self.request.headers.get(key)

    def header(self, key: str, value: str) -> None:
        """Set a response header; an empty value removes it."""
        if value == "":
            self.response.headers.delete(key)
        else:
            self.response.headers.set(key, value)

    def status(self, code: int) -> None:
        """Set the response status code."""
        self.response.write_header(code)

    def get_raw_data(self) -> bytes:
        """Read the request body."""
        return self.request.read_body()

    # Cookies

    def set_same_site(self, same_site: SameSite) -> None:
        """Set the SameSite attribute for cookies set later."""
        self.same_site = same_site

    def set_cookie(self, name: str, value: str, max_age: int, path: str, domain: str,
                   secure: bool, http_only: bool) -> None:
        """Add a Set-Cookie header; invalid cookies are dropped."""
        try:
            line = format_set_cookie(name, quote_plus(value), max_age, path or "/", domain,
                                     self.same_site, secure, http_only)
        except ValueError:
            return
        self.response.headers.add("Set-Cookie", line)

    def cookie(self, name: str) -> str:
        """Return the unescaped value of a request cookie."""
        return unquote_plus(self.request.cookie(name))

    # Rendering

    def render(self, code: int, renderer: Any) -> None:
        """Write the status and render the body if the status allows one."""
        self.status(code)
        if not body_allowed_for_status(code):
            renderer.write_content_type(self.response)
            self.response.write_header_now()
            return
        renderer.render(self.response)

    def html(self, code: int, name: str, obj: Any) -> None:
        """Render the named template with the engine's HTML renderer."""
        html_render = self._setting("html_render")
        if html_render is None:
            raise RuntimeError("no HTML renderer is set")
        self.render(code, html_render.instance(name, obj))

    def json(self, code: int, obj: Any) -> None:
        self.render(code, JSON(obj))

    def indented_json(self, code: int, obj: Any) -> None:
        self.render(code, IndentedJSON(obj))

    def secure_json(self, code: int, obj: Any) -> None:
        self.render(code, SecureJSON(obj, self._setting("secure_json_prefix")))

    def jsonp(self, code: int, obj: Any) -> None:
        """Render JSON padded with the 'callback' query value, if any."""
        callback = self.default_query("callback", "")
        if not callback:
            self.render(code, JSON(obj))
        else:
            self.render(code, JsonpJSON(callback, obj))

    def ascii_json(self, code: int, obj: Any) -> None:
        self.render(code, AsciiJSON(obj))

    def pure_json(self, code: int, obj: Any) -> None:
        self.render(code, PureJSON(obj))

    def xml(self, code: int, obj: Any) -> None:
        self.render(code, XML(obj))

    def yaml(self, code: int, obj: Any) -> None:
        self.render(code, YAML(obj))

    def string(self, code: int, format: str, *args: Any) -> None:
        self.render(code, String(format, args))

    def redirect(self, code: int, location: str) -> None:
        self.render(-1, Redirect(code, location, self.request))

    def data(self, code: int, content_type: str, data: bytes) -> None:
        self.render(code, Data(content_type, data))

    def data_from_reader(self, code: int, content_length: int, content_type: str,
                         reader: BinaryIO, extra_headers: Optional[dict[str, str]]) -> None:
        self.render(code, Reader(content_type, content_length, reader, extra_headers))

    def _plain_error(self, code: int, text: str) -> None:
        self.response.headers.set("Content-Type", "text/plain; charset=utf-8")
        self.response.headers.set("X-Content-Type-Options", "nosniff")
        self.status(code)
        self.response.write(text + "\n")

    def _serve(self, opener: Callable[[], Any]) -> None:
        try:
            handle = opener()
        except PermissionError:
            self._plain_error(403, "403 Forbidden")
            return
        except (OSError, ValueError):
            self._plain_error(404, "404 page not found")
            return
        with handle:
            if handle.is_dir:
                index = os.path.join(handle.path, "index.html")
                if os.path.isfile(index):
                    self._write_file(index, DirFile(index).read())
                    return
                entries = handle.readdir(0)
                self.response.headers.set("Content-Type", "text/html; charset=utf-8")
                lines = "".join(f'<a href="{quote(e)}">{e}</a>\n' for e in entries)
                self.response.write(f"<pre>\n{lines}</pre>\n")
                return
            self._write_file(handle.path, handle.read())

    def _write_file(self, path: str, content: bytes) -> None:
        headers = self.response.headers
        if not headers.get_all("Content-Type"):
            guessed, _ = mimetypes.guess_type(path)
            if guessed is None:
                try:
                    content[:512].decode("utf-8")
                    guessed = "text/plain"
                except UnicodeDecodeError:
                    guessed = "application/octet-stream"
            if guessed.startswith("text/"):
                guessed += "; charset=utf-8"
            headers.set("Content-Type", guessed)
        headers.set("Content-Length", str(len(content)))
        self.response.write(content)

    def file(self, filepath: str) -> None:
        """Serve a file from the local file system."""
        self._serve(lambda: DirFile(filepath))

    def file_from_fs(self, filepath: str, fs: Any) -> None:
        """Serve a file opened from fs; the request path is restored afterwards."""
        old_path = self.request.path
        self.request.path = filepath
        try:
            self._serve(lambda: fs.open(filepath))
        finally:
            self.request.path = old_path

    def file_attachment(self, filepath: str, filename: str) -> None:
        """Serve a file as a download named filename."""
        self.response.headers.set("Content-Disposition", f'attachment; filename="{filename}"')
        self.file(filepath)

    def sse_event(self, name: str, message: Any) -> None:
        self.render(-1, Event(event=name, data=message))

    def stream(self, step: Callable[[Response], bool]) -> bool:
        """Call step until it returns False; return True if the client went away."""
        response = self.response
        while True:
            if response.client_gone:
                return True
            keep_open = step(response)
            response.flush()
            if not keep_open:
                return False

    # Negotiation

    def negotiate(self, code: int, config: Negotiate) -> None:
        """Render the data in the best format the client accepts."""
        chosen = self.negotiate_format(*config.offered)
        if chosen == MIME_JSON:
            self.json(code, _choose(config.json_data, config.data))
        elif chosen == MIME_HTML:
            self.html(code, config.html_name, _choose(config.html_data, config.data))
        elif chosen == MIME_XML:
            self.xml(code, _choose(config.xml_data, config.data))
        elif chosen == MIME_YAML:
            self.yaml(code, _choose(config.yaml_data, config.data))
        else:
            self.abort_with_error(
                406, ValueError("the accepted formats are not offered by the server"))

    def negotiate_format(self, *offered: str) -> str:
        """Return the first offer matching an accepted format, or ''."""
        if not offered:
            raise ValueError("you must provide at least one offer")
        if self.accepted is None:
            self.accepted = parse_accept(self.get_header("Accept"))
        if not self.accepted:
            return offered[0]
        for accepted in self.accepted:
            for offer in offered:
                matched = 0
                for a_char, o_char in zip(accepted, offer):
                    if a_char == "*" or o_char == "*":
                        return offer
                    if a_char != o_char:
                        break
                    matched += 1
                if matched == len(accepted):
                    return offer
        return ""

    def set_accepted(self, *formats: str) -> None:
        """Set the accepted formats by hand."""
        self.accepted = list(formats)