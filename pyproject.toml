[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "corral"
version = "0.1.0"
description = "An HTTP request context with a middleware chain, typed keys, client-IP detection, content negotiation and JSON, XML, YAML and SSE renderers"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["http", "web", "middleware", "context", "json", "yaml", "xml", "sse", "rendering"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["corral"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
