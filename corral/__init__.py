"""HTTP request context, middleware engine, response renderers and helpers."""

__version__ = "0.1.0"