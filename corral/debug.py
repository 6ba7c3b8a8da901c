"""Debug-mode switch and the messages printed while it is on."""

from __future__ import annotations

import functools
import platform
import sys
from typing import Any, Callable, Optional, Sequence, TextIO

_PREFIX = "[CORRAL-debug] "
_MIN_SUPPORTED_MINOR = 10


class _DebugState:
    def __init__(self) -> None:
        self.enabled = True
        self.out: Optional[TextIO] = None
        self.err: Optional[TextIO] = None
        self.route_printer: Optional[Callable[[str, str, str, int], None]] = None


_state = _DebugState()


def set_debug(enabled: bool) -> None:
    """Turn debug mode on or off."""
    _state.enabled = bool(enabled)


def is_debugging() -> bool:
    """Tell whether debug mode is on."""
    return _state.enabled


def set_writers(out: Optional[TextIO], err: Optional[TextIO]) -> None:
    """Set the streams for debug and error output; None means stdout/stderr."""
    _state.out = out
    _state.err = err


def set_route_printer(func: Optional[Callable[[str, str, str, int], None]]) -> None:
    """Replace the route printer; None restores the default format."""
    _state.route_printer = func


def _out() -> TextIO:
    return _state.out if _state.out is not None else sys.stdout


def _err() -> TextIO:
    return _state.err if _state.err is not None else sys.stderr


def handler_name(handler: Any) -> str:
    """Return the dotted name of a handler callable."""
    if handler is None:
        return ""
    target = handler.func if isinstance(handler, functools.partial) else handler
    module = getattr(target, "__module__", None) or type(target).__module__
    name = getattr(target, "__qualname__", None) or type(target).__qualname__
    return f"{module}.{name}"


def debug_print(format: str, *args: Any) -> None:
    """Print a %-style formatted message when debugging."""
    if not is_debugging():
        return
    if not format.endswith("\n"):
        format += "\n"
    message = format % args if args else format
    _out().write(_PREFIX + message)


def debug_print_error(err: Optional[BaseException]) -> None:
    """Print an error to the error stream when debugging."""
    if err is not None and is_debugging():
        _err().write(f"{_PREFIX}[ERROR] {err}\n")


def debug_print_route(http_method: str, absolute_path: str, handlers: Sequence[Any]) -> None:
    """Print a registered route when debugging."""
    if not is_debugging():
        return
    count = len(handlers)
    name = handler_name(handlers[-1] if handlers else None)
    if _state.route_printer is None:
        debug_print("%-6s %-25s --> %s (%d handlers)\n", http_method, absolute_path, name, count)
    else:
        _state.route_printer(http_method, absolute_path, name, count)


def get_min_ver(v: str) -> int:
    """Return the minor number of a dotted version string."""
    first = v.find(".")
    last = v.rfind(".")
    part = v[first + 1:] if first == last else v[first + 1:last]
    if not (part.isascii() and part.isdigit()):
        raise ValueError(f"invalid minor version in {v!r}")
    return int(part)


def debug_print_warning_default() -> None:
    """Warn about the runtime version and the default middleware."""
    try:
        minor = get_min_ver(platform.python_version())
    except ValueError:
        minor = None
    if minor is not None and minor < _MIN_SUPPORTED_MINOR:
        debug_print("[WARNING] Now corral requires Python 3.10+.\n\n")
    debug_print(
        "[WARNING] Creating an Engine instance with the Logger and Recovery "
        "middleware already attached.\n\n"
    )


def debug_print_warning_new() -> None:
    """Warn that debug mode is on."""
    debug_print(
        '[WARNING] Running in "debug" mode. Switch to "release" mode in production.\n'
        " - using code:\tcorral.debug.set_debug(False)\n\n"
    )


def debug_print_warning_set_html_template() -> None:
    """Warn that setting the HTML renderer late is not thread-safe."""
    debug_print(
        "[WARNING] Since set_html_render() is NOT thread-safe. It should only be called\n"
        "at initialization. ie. before any route is registered or the router is "
        "listening in a socket:\n\n"
        "\tengine = Engine()\n"
        "\tengine.set_html_render(renderer)  # << good place\n\n"
    )