# corral

A small HTTP toolkit built around a request `Context`: a chain of handlers
with abort support, per-request key/value storage, query, form, file-upload
and cookie access, client-IP detection behind trusted proxies, content
negotiation, and response renderers for JSON, XML, YAML, plain strings, raw
data, streams, redirects and server-sent events.

## Install

```
pip install corral
```

The `test` extra (`pip install "corral[test]"`) adds pytest for the test suite.

## Modules

- `corral.engine` — `Engine` holds the global middleware (`use`), the
  fallback chains for unknown routes and methods (`no_route`, `no_method`,
  combined with the middleware into `all_no_route` and `all_no_method`), the
  trusted proxy list (`prepare_trusted_cidrs`, which raises `ValueError` on a
  bad entry) and rendering settings (`delims`, `set_secure_json_prefix`,
  `set_html_render`). `allocate_context()` creates a `Context` bound to it.
  The module also has `parse_ip`, `last_handler`, `serve_error` (runs a
  chain with a preset status and writes a default body if nothing was
  written), `redirect_trailing_slash` and `redirect_request` (301 for GET,
  307 otherwise).
- `corral.context` — `Context`, handed to every handler, plus `Negotiate`
  and the helpers `body_allowed_for_status`, `validate_header`,
  `filter_flags` and `parse_accept`.
- `corral.basecontext` — `BaseContext` (chain flow with `next`, `abort`,
  `is_aborted`; errors with `error`; keys with `set`, `get`, `must_get` and
  the typed getters `get_string`, `get_bool`, `get_int`, `get_float`,
  `get_datetime`, `get_timedelta`, `get_list`, `get_dict`; URL parameters
  with `param`) and `Param`.
- `corral.messages` — `Request`, `Response`, `Headers` (case-insensitive,
  multi-valued), `UploadedFile`, `MultipartForm`, `SameSite` and
  `format_set_cookie`.
- `corral.responses` — renderers `JSON`, `IndentedJSON`, `SecureJSON`,
  `JsonpJSON`, `PureJSON`, `AsciiJSON`, `XML`, `YAML`, `String`, `Data`,
  `Reader`, `Redirect` and `Event`, each with `render(response)` and
  `write_content_type(response)`.
- `corral.errors` — `Error`, `ErrorType` flags and `ErrorList`, which
  filters with `by_type` and serialises with `json` / `to_json`.
- `corral.fs` — `dir_fs(root, list_directory)` returns a `DirFS`, or an
  `OnlyFilesFS` whose opened directories list no entries; usable with
  `Context.file_from_fs`.
- `corral.debug` — debug output, on by default: `set_debug`,
  `is_debugging`, `set_writers(out, err)`, `set_route_printer`,
  `debug_print` and friends. Messages start with `[CORRAL-debug] `.
- `corral.bytesconv` — `string_to_bytes` and `bytes_to_string`, lossless
  UTF-8 conversion that keeps undecodable bytes.

## Using a context

```python
from corral.engine import Engine
from corral.messages import Request, Response

engine = Engine()

def hello(ctx):
    ctx.json(200, {"greeting": "hello", "name": ctx.default_query("name", "world")})

ctx = engine.allocate_context()
ctx.request = Request("GET", "/hello?name=corral")
ctx.response = Response()
ctx.handlers = [hello]
ctx.next()

print(ctx.response.status, bytes(ctx.response.body))
# 200 b'{"greeting":"hello","name":"corral"}'
```

Input: `query`, `default_query`, `get_query` (None when absent),
`query_array`, `query_map` (`ids[a]=x` becomes `{"a": "x"}`), and the same
for the body with `post_form`, `default_post_form`, `get_post_form`,
`post_form_array`, `post_form_map`. Uploads come through `form_file`,
`multipart_form` and `save_uploaded_file`. `cookie`, `get_header`,
`content_type`, `is_websocket`, `get_raw_data`, `remote_ip` and
`client_ip` read the rest of the request; `client_ip` honours the engine's
`app_engine`, `forwarded_by_client_ip`, `remote_ip_headers` and
`trusted_proxies`.

Output: `status`, `header`, `set_cookie` (with `set_same_site`), and the
renderers `json`, `indented_json`, `secure_json`, `jsonp`, `ascii_json`,
`pure_json`, `xml`, `yaml`, `string` (%-formatting), `data`,
`data_from_reader`, `redirect`, `file`, `file_from_fs`, `file_attachment`,
`sse_event`, `stream` and `html`. For status codes that allow no body
(1xx, 204, 304) only the content type is set. `negotiate` picks JSON, HTML,
XML or YAML from the `Accept` header via `negotiate_format`, and aborts
with 406 when nothing offered is accepted. `html` needs an object set with
`Engine.set_html_render` whose `instance(name, data)` returns a renderer.

`abort_with_status`, `abort_with_status_json` and `abort_with_error`
stop the chain; `error` records errors in `ctx.errors`.

## What this package does not do

There is no route tree: the engine does not register routes, match request
paths or dispatch requests to handlers, and it does not run an HTTP server
or adapt to WSGI. You build a `Request`, set `ctx.handlers` yourself and
call `ctx.next()`. The engine settings `redirect_trailing_slash`,
`redirect_fixed_path`, `handle_method_not_allowed`, `use_raw_path`,
`unescape_path_values`, `remove_extra_slash` and `template_delims` are
stored but nothing in the package reads them. There is no template engine;
HTML rendering goes through whatever you pass to `set_html_render`.