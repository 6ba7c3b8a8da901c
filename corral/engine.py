"""The engine: global middleware, fallback handlers and settings for contexts."""

from __future__ import annotations

import ipaddress
import posixpath
from typing import Any, Callable, Optional, Sequence, Union

from .context import Context
from .debug import debug_print, debug_print_warning_new
from .messages import DEFAULT_MAX_MEMORY
from .responses import Redirect

DEFAULT_404_BODY = b"404 page not found"
DEFAULT_405_BODY = b"405 method not allowed"

Handler = Callable[[Context], Any]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_ip(ip: str) -> Optional[IPAddress]:
    """Parse an IP address, giving IPv4-mapped IPv6 addresses as IPv4; None if invalid."""
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return None
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return parsed.ipv4_mapped
    return parsed


def last_handler(handlers: Optional[Sequence[Handler]]) -> Optional[Handler]:
    """Return the last handler of a chain, or None for an empty chain."""
    return handlers[-1] if handlers else None


def _clean_path(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


class Engine:
    """Holds the global middleware, the fallback chains and the request settings."""

    def __init__(self) -> None:
        debug_print_warning_new()
        self.handlers: list[Handler] = []
        self.base_path = "/"
        self.redirect_trailing_slash = True
        self.redirect_fixed_path = False
        self.handle_method_not_allowed = False
        self.forwarded_by_client_ip = True
        self.remote_ip_headers: Optional[list[str]] = ["X-Forwarded-For", "X-Real-IP"]
        self.trusted_proxies: Optional[list[str]] = ["0.0.0.0/0"]
        self.app_engine = False
        self.use_raw_path = False
        self.unescape_path_values = True
        self.max_multipart_memory = DEFAULT_MAX_MEMORY
        self.remove_extra_slash = False
        self.template_delims = ("{{", "}}")
        self.secure_json_prefix = "while(1);"
        self.html_render: Any = None
        self.no_route_handlers: list[Handler] = []
        self.no_method_handlers: list[Handler] = []
        self.all_no_route: list[Handler] = []
        self.all_no_method: list[Handler] = []
        self.trusted_cidrs: Optional[list[IPNetwork]] = None

    def allocate_context(self) -> Context:
        """Create a fresh context bound to this engine."""
        return Context(engine=self)

    def delims(self, left: str, right: str) -> "Engine":
        """Set the template delimiters and return the engine."""
        self.template_delims = (left, right)
        return self

    def set_secure_json_prefix(self, prefix: str) -> "Engine":
        """Set the prefix used by secure JSON responses and return the engine."""
        self.secure_json_prefix = prefix
        return self

    def set_html_render(self, html_render: Any) -> None:
        """Set the object whose instance(name, data) builds HTML renderers."""
        self.html_render = html_render

    def _combine(self, extra: Sequence[Handler]) -> list[Handler]:
        return [*self.handlers, *extra]

    def _rebuild_404_handlers(self) -> None:
        self.all_no_route = self._combine(self.no_route_handlers)

    def _rebuild_405_handlers(self) -> None:
        self.all_no_method = self._combine(self.no_method_handlers)

    def use(self, *args: Handler) -> "Engine":
        """Attach global middleware, run for every request including 404 and 405."""
        self.handlers.extend(args)
        self._rebuild_404_handlers()
        self._rebuild_405_handlers()
        return self

    def no_route(self, *args: Handler) -> None:
        """Set the handlers run when no route matches."""
        self.no_route_handlers = list(args)
        self._rebuild_404_handlers()

    def no_method(self, *args: Handler) -> None:
        """Set the handlers run when the route exists for another method only."""
        self.no_method_handlers = list(args)
        self._rebuild_405_handlers()

    def prepare_trusted_cidrs(self) -> Optional[list[IPNetwork]]:
        """Parse trusted_proxies into networks; raise ValueError on a bad entry."""
        if self.trusted_proxies is None:
            return None
        networks: list[IPNetwork] = []
        for proxy in self.trusted_proxies:
            if "/" not in proxy:
                ip = parse_ip(proxy)
                if ip is None:
                    raise ValueError(f"invalid IP address: {proxy}")
                proxy = f"{ip}/{32 if ip.version == 4 else 128}"
            try:
                networks.append(ipaddress.ip_network(proxy, strict=False))
            except ValueError as exc:
                raise ValueError(f"invalid CIDR address: {proxy}") from exc
        self.trusted_cidrs = networks
        return networks


def serve_error(context: Context, code: int, default_message: bytes) -> None:
    """Run the context's chain with a preset status; write a default body if untouched."""
    response = context.response
    response.status = code
    context.next()
    if response.written:
        return
    if response.status == code:
        response.headers.set("Content-Type", "text/plain")
        response.write(default_message)
        return
    response.write_header_now()


def redirect_trailing_slash(context: Context) -> None:
    """Redirect to the request path with its trailing slash added or removed."""
    request = context.request
    path = request.path
    prefix = _clean_path(request.headers.get("X-Forwarded-Prefix"))
    if prefix != ".":
        path = prefix + "/" + request.path
    request.path = path + "/"
    if len(path) > 1 and path.endswith("/"):
        request.path = path[:-1]
    redirect_request(context)


def redirect_request(context: Context) -> None:
    """Redirect to the request's current URL: 301 for GET, 307 otherwise."""
    request = context.request
    path = request.path
    url = request.url
    code = 301 if request.method == "GET" else 307
    debug_print("redirecting request %d: %s --> %s", code, path, url)
    Redirect(code, url, request).render(context.response)
    context.response.write_header_now()