import io
from dataclasses import dataclass
from types import SimpleNamespace

import pytest

from corral.basecontext import ABORT_INDEX, Param
from corral.context import (
    MIME_HTML,
    MIME_JSON,
    MIME_POST_FORM,
    MIME_XML,
    MIME_YAML,
    Context,
    Negotiate,
    body_allowed_for_status,
    filter_flags,
    parse_accept,
    validate_header,
)
from corral.fs import dir_fs
from corral.messages import (
    MissingFileError,
    MultipartError,
    NoCookieError,
    Request,
    SameSite,
    UploadedFile,
)
from corral.responses import Event

BOUNDARY = "--testboundary"


def multipart_body(fields, files=()):
    chunks = []
    for name, value in fields:
        chunks.append(f'--{BOUNDARY}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n')
    for name, filename, content in files:
        chunks.append(
            f'--{BOUNDARY}\r\nContent-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
            f"Content-Type: application/octet-stream\r\n\r\n{content}\r\n")
    chunks.append(f"--{BOUNDARY}--\r\n")
    return "".join(chunks).encode()


def multipart_request(fields, files=()):
    return Request("POST", "/", {"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"},
                   multipart_body(fields, files))


class FakeTemplate:
    def __init__(self, text, data):
        self.text, self.data = text, data

    def render(self, response):
        self.write_content_type(response)
        response.write(self.text % self.data["name"])

    def write_content_type(self, response):
        if not response.headers.get("Content-Type"):
            response.headers.set("Content-Type", "text/html; charset=utf-8")


class FakeHTMLRender:
    def instance(self, name, obj):
        assert name == "t"
        return FakeTemplate("Hello %s", obj)


def test_query():
    c = Context(Request("GET", "http://example.com/?foo=bar&page=10&id="))
    assert c.get_query("foo") == "bar"
    assert c.default_query("foo", "none") == "bar"
    assert c.query("page") == "10"
    assert c.get_query("id") == ""
    assert c.default_query("id", "nada") == ""
    assert c.get_query("NoKey") is None
    assert c.default_query("NoKey", "nada") == "nada"
    assert c.query("NoKey") == ""
    assert c.get_post_form("page") is None
    assert c.post_form("foo") == ""


def test_query_without_request():
    c = Context()
    assert c.get_query("NoKey") is None
    assert c.default_query("NoKey", "nada") == "nada"


def test_query_and_post_form():
    c = Context(Request(
        "POST", "/?both=GET&id=main&id=omit&array[]=first&array[]=second&ids[a]=hi&ids[b]=3.14",
        {"Content-Type": MIME_POST_FORM}, b"foo=bar&page=11&both=&foo=second"))
    assert c.default_post_form("foo", "none") == "bar"
    assert c.query("foo") == ""
    assert c.get_post_form("page") == "11"
    assert c.get_post_form("both") == ""
    assert c.default_post_form("both", "nothing") == ""
    assert c.query("both") == "GET"
    assert c.get_query("id") == "main"
    assert c.default_post_form("id", "000") == "000"
    assert c.get_post_form("NoKey") is None
    assert c.default_post_form("NoKey", "nada") == "nada"
    assert c.query_array("array[]") == ["first", "second"]
    assert c.query_array("nokey") == []
    assert c.query_array("both") == ["GET"]
    assert c.query_map("ids") == {"a": "hi", "b": "3.14"}
    assert c.query_map("nokey") == {}
    assert c.query_map("both") == {}
    assert c.query_map("array") == {}


def test_post_form_multipart():
    c = Context(multipart_request([
        ("foo", "bar"), ("bar", "10"), ("bar", "foo2"), ("array", "first"),
        ("array", "second"), ("id", ""), ("names[a]", "thinkerou"), ("names[b]", "tianou")]))
    assert c.get_query("foo") is None
    assert c.default_query("id", "nothing") == "nothing"
    assert c.get_post_form("foo") == "bar"
    assert c.post_form("array") == "first"
    assert c.default_post_form("bar", "nothing") == "10"
    assert c.get_post_form("id") == ""
    assert c.get_post_form("nokey") is None
    assert c.post_form_array("array") == ["first", "second"]
    assert c.post_form_array("nokey") == []
    assert c.post_form_map("names") == {"a": "thinkerou", "b": "tianou"}
    assert c.post_form_map("nokey") == {}


def test_form_file_and_save(tmp_path):
    c = Context(multipart_request([], [("file", "test", "test")]))
    upload = c.form_file("file")
    assert upload.filename == "test"
    target = tmp_path / "saved"
    c.save_uploaded_file(upload, target)
    assert target.read_bytes() == b"test"
    with pytest.raises(OSError):
        c.save_uploaded_file(upload, tmp_path)
    with pytest.raises(MissingFileError):
        c.form_file("other")


def test_form_file_failed():
    c = Context(Request("POST", "/", {"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"}))
    with pytest.raises(MultipartError):
        c.form_file("file")


def test_multipart_form(tmp_path):
    c = Context(multipart_request([("foo", "bar")], [("file", "test", "test")]))
    form = c.multipart_form()
    assert form.value["foo"] == ["bar"]
    c.save_uploaded_file(form.file["file"][0], tmp_path / "out")
    assert (tmp_path / "out").read_bytes() == b"test"


def test_save_uploaded_open_failed(tmp_path):
    with pytest.raises(FileNotFoundError):
        Context().save_uploaded_file(UploadedFile("file"), tmp_path / "x")


def test_set_cookie():
    c = Context()
    c.set_same_site(SameSite.LAX)
    c.set_cookie("user", "token", 1, "", "localhost", True, True)
    assert c.response.headers.get("Set-Cookie") == (
        "user=token; Path=/; Domain=localhost; Max-Age=1; HttpOnly; Secure; SameSite=Lax")


def test_get_cookie():
    c = Context(Request("GET", "/get", {"Cookie": "user=token"}))
    assert c.cookie("user") == "token"
    with pytest.raises(NoCookieError):
        c.cookie("nokey")


def test_body_allowed_for_status():
    assert not body_allowed_for_status(102)
    assert not body_allowed_for_status(204)
    assert not body_allowed_for_status(304)
    assert body_allowed_for_status(500)


def test_render_raises_renderer_error():
    class Broken:
        def render(self, response):
            raise RuntimeError("TestPanicRender")

        def write_content_type(self, response):
            pass

    with pytest.raises(RuntimeError, match="TestPanicRender"):
        Context().render(200, Broken())


def test_render_json():
    c = Context()
    c.json(201, {"foo": "bar", "html": "<b>"})
    assert c.response.code == 201
    assert bytes(c.response.body) == b'{"foo":"bar","html":"\\u003cb\\u003e"}'
    assert c.response.headers.get("Content-Type") == "application/json; charset=utf-8"


def test_render_jsonp():
    c = Context(Request("GET", "http://example.com/?callback=x"))
    c.jsonp(201, {"foo": "bar"})
    assert bytes(c.response.body) == b'x({"foo":"bar"});'
    assert c.response.headers.get("Content-Type") == "application/javascript; charset=utf-8"


def test_render_jsonp_without_callback():
    c = Context(Request("GET", "http://example.com"))
    c.jsonp(201, {"foo": "bar"})
    assert bytes(c.response.body) == b'{"foo":"bar"}'
    assert c.response.headers.get("Content-Type") == "application/json; charset=utf-8"


def test_render_no_content_json():
    c = Context()
    c.json(204, {"foo": "bar"})
    assert c.response.code == 204
    assert bytes(c.response.body) == b""
    assert c.response.headers.get("Content-Type") == "application/json; charset=utf-8"


def test_render_api_json_keeps_content_type():
    c = Context()
    c.header("Content-Type", "application/vnd.api+json")
    c.json(201, {"foo": "bar"})
    assert bytes(c.response.body) == b'{"foo":"bar"}'
    assert c.response.headers.get("Content-Type") == "application/vnd.api+json"


def test_render_indented_json():
    c = Context()
    c.indented_json(201, {"foo": "bar", "bar": "foo", "nested": {"foo": "bar"}})
    assert bytes(c.response.body).decode() == (
        '{\n    "bar": "foo",\n    "foo": "bar",\n    "nested": {\n        "foo": "bar"\n    }\n}')


def test_render_secure_json():
    c = Context(engine=SimpleNamespace(secure_json_prefix="&&&START&&&"))
    c.secure_json(201, ["foo", "bar"])
    assert bytes(c.response.body) == b'&&&START&&&["foo","bar"]'


def test_render_no_content_ascii_json():
    c = Context()
    c.ascii_json(204, ["lang", "Go语言"])
    assert bytes(c.response.body) == b""
    assert c.response.headers.get("Content-Type") == "application/json"


def test_render_pure_json():
    c = Context()
    c.pure_json(201, {"foo": "bar", "html": "<b>"})
    assert bytes(c.response.body) == b'{"foo":"bar","html":"<b>"}\n'


def test_render_html():
    c = Context(engine=SimpleNamespace(html_render=FakeHTMLRender()))
    c.html(201, "t", {"name": "alexandernyquist"})
    assert c.response.code == 201
    assert bytes(c.response.body) == b"Hello alexandernyquist"
    assert c.response.headers.get("Content-Type") == "text/html; charset=utf-8"


def test_render_xml_yaml_string_data():
    c = Context()
    c.xml(201, {"foo": "bar"})
    assert bytes(c.response.body) == b"<map><foo>bar</foo></map>"
    c = Context()
    c.yaml(201, {"foo": "bar"})
    assert bytes(c.response.body) == b"foo: bar\n"
    assert c.response.headers.get("Content-Type") == "application/x-yaml; charset=utf-8"
    c = Context()
    c.string(201, "test %s %d", "string", 2)
    assert bytes(c.response.body) == b"test string 2"
    assert c.response.headers.get("Content-Type") == "text/plain; charset=utf-8"
    c = Context()
    c.data(204, "text/csv", b"foo,bar")
    assert bytes(c.response.body) == b""
    assert c.response.headers.get("Content-Type") == "text/csv"


def test_render_sse():
    c = Context()
    c.sse_event("float", 1.5)
    c.render(-1, Event(id="123", data="text"))
    c.sse_event("chat", {"foo": "bar", "bar": "foo"})
    assert bytes(c.response.body).decode() == (
        'event:float\ndata:1.5\n\nid:123\ndata:text\n\nevent:chat\ndata:{"bar":"foo","foo":"bar"}\n\n')


def test_render_file_and_attachment(tmp_path):
    path = tmp_path / "sample.txt"
    path.write_text("hello file")
    c = Context(Request("GET", "/"))
    c.file(str(path))
    assert c.response.code == 200
    assert bytes(c.response.body) == b"hello file"
    assert c.response.headers.get("Content-Type") == "text/plain; charset=utf-8"
    c = Context(Request("GET", "/"))
    c.file_attachment(str(path), "new_filename.txt")
    assert c.response.headers.get("Content-Disposition") == 'attachment; filename="new_filename.txt"'
    c = Context(Request("GET", "/"))
    c.file(str(tmp_path / "missing"))
    assert c.response.code == 404


def test_render_file_from_fs(tmp_path):
    (tmp_path / "sample.txt").write_text("from fs")
    c = Context(Request("GET", "/some/path"))
    c.file_from_fs("sample.txt", dir_fs(str(tmp_path), False))
    assert bytes(c.response.body) == b"from fs"
    assert c.request.path == "/some/path"


def test_headers():
    c = Context()
    c.header("Content-Type", "text/plain")
    c.header("X-Custom", "value")
    assert c.response.headers.get("X-Custom") == "value"
    c.header("Content-Type", "text/html")
    c.header("X-Custom", "")
    assert c.response.headers.get("Content-Type") == "text/html"
    assert "X-Custom" not in c.response.headers


def test_redirects():
    c = Context(Request("POST", "http://example.com"))
    with pytest.raises(ValueError):
        c.redirect(299, "/new_path")
    with pytest.raises(ValueError):
        c.redirect(309, "/new_path")
    c.redirect(301, "/path")
    c.response.write_header_now()
    assert c.response.code == 301
    assert c.response.headers.get("Location") == "/path"


def test_redirect_absolute_and_201():
    c = Context(Request("POST", "http://example.com"))
    c.redirect(302, "http://example.com/other")
    c.response.write_header_now()
    assert c.response.code == 302
    assert c.response.headers.get("Location") == "http://example.com/other"
    c = Context(Request("POST", "http://example.com"))
    c.redirect(201, "/resource")
    c.response.write_header_now()
    assert c.response.code == 201


def test_negotiation_json_xml():
    c = Context(Request("POST", "/"))
    c.negotiate(200, Negotiate(offered=[MIME_JSON, MIME_XML, MIME_YAML], data={"foo": "bar"}))
    assert bytes(c.response.body) == b'{"foo":"bar"}'
    c = Context(Request("POST", "/"))
    c.negotiate(200, Negotiate(offered=[MIME_XML, MIME_JSON], data={"foo": "bar"}))
    assert bytes(c.response.body) == b"<map><foo>bar</foo></map>"


def test_negotiation_html():
    c = Context(Request("POST", "/"), engine=SimpleNamespace(html_render=FakeHTMLRender()))
    c.negotiate(200, Negotiate(offered=[MIME_HTML], data={"name": "gin"}, html_name="t"))
    assert bytes(c.response.body) == b"Hello gin"


def test_negotiation_not_supported():
    c = Context(Request("POST", "/"))
    c.negotiate(200, Negotiate(offered=[MIME_POST_FORM]))
    assert c.response.code == 406
    assert c.index == ABORT_INDEX
    assert c.is_aborted()


def test_negotiate_format():
    c = Context(Request("POST", "/"))
    with pytest.raises(ValueError):
        c.negotiate_format()
    assert c.negotiate_format(MIME_JSON, MIME_XML) == MIME_JSON
    assert c.negotiate_format(MIME_HTML, MIME_JSON) == MIME_HTML


def test_negotiate_format_with_accept():
    c = Context(Request("POST", "/", {"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9;q=0.8"}))
    assert c.negotiate_format(MIME_JSON, MIME_XML) == MIME_XML
    assert c.negotiate_format(MIME_XML, MIME_HTML) == MIME_HTML
    assert c.negotiate_format(MIME_JSON) == ""


def test_negotiate_format_wildcards():
    c = Context(Request("POST", "/", {"Accept": "*/*"}))
    assert c.negotiate_format("text/*") == "text/*"
    assert c.negotiate_format(MIME_JSON) == MIME_JSON
    c = Context(Request("POST", "/", {"Accept": "text/*"}))
    assert c.negotiate_format("*/*") == "*/*"
    assert c.negotiate_format("application/*") == ""
    assert c.negotiate_format(MIME_JSON) == ""
    assert c.negotiate_format(MIME_HTML) == MIME_HTML


def test_negotiate_format_custom():
    c = Context(Request("POST", "/", {"Accept": "text/html"}))
    c.set_accepted(MIME_JSON, MIME_XML)
    assert c.negotiate_format(MIME_JSON, MIME_XML) == MIME_JSON
    assert c.negotiate_format(MIME_XML, MIME_HTML) == MIME_XML


def test_abort_with_status():
    c = Context()
    c.index = 4
    c.abort_with_status(401)
    assert c.index == ABORT_INDEX
    assert c.response.code == 401
    assert c.is_aborted()


def test_abort_with_status_json():
    @dataclass
    class Message:
        foo: str
        bar: str

    c = Context()
    c.abort_with_status_json(415, Message("fooValue", "barValue"))
    assert c.response.code == 415
    assert c.is_aborted()
    assert bytes(c.response.body) == b'{"foo":"fooValue","bar":"barValue"}'


def test_abort_with_error():
    c = Context()
    err = c.abort_with_error(401, ValueError("bad input")).set_meta("some input")
    assert c.response.code == 401
    assert c.is_aborted()
    assert err.meta == "some input"
    assert c.errors.errors() == ["bad input"]


def test_copy():
    c = Context(Request("POST", "/hola"))
    c.index = 2
    c.handlers = [lambda ctx: None]
    c.params = [Param("foo", "bar")]
    c.set("foo", "bar")
    cp = c.copy()
    assert cp.handlers is None
    assert cp.index == ABORT_INDEX
    assert cp.request is c.request
    assert cp.params == c.params
    assert cp.keys == c.keys
    cp.set("foo", "notBar")
    assert c.get("foo") == "bar"


def _client_ip_context():
    engine = SimpleNamespace(app_engine=False, forwarded_by_client_ip=True,
                             remote_ip_headers=["X-Forwarded-For", "X-Real-IP"],
                             trusted_proxies=["0.0.0.0/0"])
    request = Request("POST", "/", {
        "X-Real-IP": " 10.10.10.10  ",
        "X-Forwarded-For": "  20.20.20.20, 30.30.30.30",
        "X-Appengine-Remote-Addr": "50.50.50.50",
    }, remote_addr="  40.40.40.40:42123 ")
    return Context(request, engine=engine)


def test_client_ip_defaults():
    c = _client_ip_context()
    h = c.request.headers
    assert c.client_ip() == "20.20.20.20"
    h.delete("X-Forwarded-For")
    assert c.client_ip() == "10.10.10.10"
    h.set("X-Forwarded-For", "30.30.30.30  ")
    assert c.client_ip() == "30.30.30.30"
    h.delete("X-Forwarded-For")
    h.delete("X-Real-IP")
    c.engine.app_engine = True
    assert c.client_ip() == "50.50.50.50"
    h.delete("X-Appengine-Remote-Addr")
    assert c.client_ip() == "40.40.40.40"
    c.request.remote_addr = "50.50.50.50"
    assert c.client_ip() == ""


def test_client_ip_trusted_proxies():
    c = _client_ip_context()
    e = c.engine
    e.trusted_proxies = []
    e.remote_ip_headers = ["X-Forwarded-For"]
    assert c.client_ip() == "40.40.40.40"
    e.trusted_proxies = ["30.30.30.30"]
    assert c.client_ip() == "40.40.40.40"
    e.trusted_proxies = ["40.40.40.40"]
    assert c.client_ip() == "20.20.20.20"
    e.trusted_proxies = ["40.40.25.25/16", "30.30.30.30"]
    assert c.client_ip() == "20.20.20.20"
    e.trusted_proxies = ["foo"]
    assert c.client_ip() == "40.40.40.40"
    e.trusted_proxies = ["40.40.40.40"]
    c.request.headers.set("X-Forwarded-For", " blah ")
    assert c.client_ip() == "40.40.40.40"
    c.request.headers.delete("X-Forwarded-For")
    e.remote_ip_headers = ["X-Forwarded-For", "X-Real-IP"]
    assert c.client_ip() == "10.10.10.10"


def test_remote_ip_fail():
    c = Context(Request("POST", "/", remote_addr="[:::]:80"))
    assert c.remote_ip() == (None, False)


def test_content_type_and_helpers():
    c = Context(Request("POST", "/", {"Content-Type": "application/json; charset=utf-8"}))
    assert c.content_type() == "application/json"
    assert filter_flags("text/html ;x") == "text/html"
    assert parse_accept("a/b;q=1, c/d ,") == ["a/b", "c/d"]
    assert validate_header(" 1.2.3.4 , 5.6.7.8") == "1.2.3.4"
    assert validate_header("1.2.3.4, nope") is None
    assert validate_header("") is None


def test_websocket_and_headers():
    c = Context(Request("GET", "/chat", {"Upgrade": "websocket", "Connection": "Upgrade"}))
    assert c.is_websocket()
    c = Context(Request("GET", "/chat", {"Host": "server.example.com", "Gin-Version": "1.0.0"}))
    assert not c.is_websocket()
    assert c.get_header("Gin-Version") == "1.0.0"
    assert c.get_header("Connection") == ""


def test_get_raw_data():
    c = Context(Request("POST", "/", {"Content-Type": MIME_POST_FORM}, b"Fetch binary post data"))
    assert c.get_raw_data() == b"Fetch binary post data"


def test_data_from_reader():
    body = b"#!PNG some raw data"
    c = Context()
    c.data_from_reader(200, len(body), "image/png", io.BytesIO(body),
                       {"Content-Disposition": 'attachment; filename="gopher.png"'})
    assert bytes(c.response.body) == body
    assert c.response.headers.get("Content-Type") == "image/png"
    assert c.response.headers.get("Content-Length") == str(len(body))
    assert c.response.headers.get("Content-Disposition") == 'attachment; filename="gopher.png"'


def test_stream():
    c = Context()
    calls = []

    def step(writer):
        writer.write(b"test")
        calls.append(1)
        return len(calls) < 2

    assert c.stream(step) is False
    assert bytes(c.response.body) == b"testtest"


def test_stream_client_gone():
    c = Context()

    def step(writer):
        writer.write(b"test")
        writer.client_gone = True
        return True

    assert c.stream(step) is True
    assert bytes(c.response.body) == b"test"