"""Tests for request metadata extraction."""
from __future__ import annotations

from starlette.requests import Request

from viewlog_server.extractor import (
    client_address,
    extract_request_event,
    header_map,
    request_hostname,
    request_url,
)
from viewlog_server.middleware import RequestSummary, ResponseSummary


def make_request(headers=(), client=("10.0.0.2", 51515), method="GET",
                 path="/search", raw_path=b"/search", query=b"q=caf%C3%A9&page=2"):
    scope = {
        "type": "http",
        "http_version": "2",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": raw_path,
        "query_string": query,
        "root_path": "",
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers],
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


def test_socket_address_without_proxy_trust():
    request = make_request(headers=[("X-Forwarded-For", "198.51.100.1")])
    assert client_address(request, trust_proxy=False) == "10.0.0.2"


def test_forwarded_for_with_proxy_trust():
    request = make_request(headers=[("X-Forwarded-For", "198.51.100.1, 10.0.0.1")])
    assert client_address(request, trust_proxy=True) == "198.51.100.1"


def test_real_ip_fallback_with_proxy_trust():
    request = make_request(headers=[("X-Real-IP", "198.51.100.9")])
    assert client_address(request, trust_proxy=True) == "198.51.100.9"


def test_trusted_proxy_without_headers_uses_socket():
    assert client_address(make_request(), trust_proxy=True) == "10.0.0.2"


def test_missing_client():
    assert client_address(make_request(client=None), trust_proxy=False) is None


def test_hostname_strips_port():
    request = make_request(headers=[("Host", "example.org:8080")])
    assert request_hostname(request, trust_proxy=False) == "example.org"


def test_hostname_ipv6_literal():
    request = make_request(headers=[("Host", "[::1]:8080")])
    assert request_hostname(request, trust_proxy=False) == "[::1]"


def test_forwarded_host_only_when_trusted():
    request = make_request(headers=[("Host", "internal:8080"), ("X-Forwarded-Host", "public.example")])
    assert request_hostname(request, trust_proxy=False) == "internal"
    assert request_hostname(request, trust_proxy=True) == "public.example"


def test_url_is_unmodified():
    request = make_request(path="/a b", raw_path=b"/a%20b", query=b"x=1&x=2")
    assert request_url(request) == "/a%20b?x=1&x=2"


def test_url_without_query():
    assert request_url(make_request(query=b"")) == "/search"


def test_repeated_headers_become_lists():
    request = make_request(headers=[("Accept", "text/html"), ("X-Tag", "a"), ("X-Tag", "b"), ("X-Tag", "c")])
    headers = header_map(request)
    assert headers["accept"] == "text/html"
    assert headers["x-tag"] == ["a", "b", "c"]


def test_extract_request_event():
    request = make_request(headers=[
        ("Host", "example.org"),
        ("Referer", "https://ref.example/"),
        ("User-Agent", "curl/8.4.0"),
    ])
    summary = RequestSummary(
        request=request,
        request_id="abc123",
        received_at="2024-01-01T00:00:00+00:00",
        body={"username": "admin"},
    )
    event = extract_request_event(summary, ResponseSummary(status_code=404, duration_ms=3.14159), trust_proxy=False)

    assert event.request_id == "abc123"
    assert event.hostname == "example.org"
    assert event.remote_address == "10.0.0.2"
    assert event.method == "GET"
    assert event.url == "/search?q=caf%C3%A9&page=2"
    assert event.http_version == "2"
    assert event.status_code == "404"
    assert event.referrer == "https://ref.example/"
    assert event.user_agent == "curl/8.4.0"
    assert event.body == {"username": "admin"}
    assert event.response_time_ms == 3.142

    fields = event.fields()
    assert fields["remote-address"] == "10.0.0.2"
    assert fields["status-code"] == "404"
    assert fields["http-version"] == "2"
    assert fields["user-agent"] == "curl/8.4.0"
    assert fields["request-id"] == "abc123"
