"""Builds a RequestEvent from a finished request/response exchange.

Everything here is plain field access on already materialized state: no I/O,
no awaiting.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Union

from starlette.requests import Request

from .middleware import RequestSummary, ResponseSummary
from .models import RequestEvent


def client_address(request: Request, trust_proxy: bool) -> Optional[str]:
    if trust_proxy:
        # XFF can be "client, proxy1, proxy2"
        xff = request.headers.get("x-forwarded-for", "")
        chosen = xff.split(",")[0].strip()
        if chosen:
            return chosen
        xri = request.headers.get("x-real-ip", "").strip()
        if xri:
            return xri
    if request.client and request.client.host:
        return request.client.host
    return None


def request_hostname(request: Request, trust_proxy: bool) -> str:
    host = ""
    if trust_proxy:
        host = request.headers.get("x-forwarded-host", "").split(",")[0].strip()
    if not host:
        host = request.headers.get("host", "").strip()
    if not host:
        return request.url.hostname or ""
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


def request_url(request: Request) -> str:
    scope = request.scope
    raw_path = scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else scope.get("path", "/")
    query = scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def header_map(request: Request) -> Dict[str, Union[str, List[str]]]:
    headers: Dict[str, Union[str, List[str]]] = {}
    for raw_key, raw_value in request.headers.raw:
        k, v = raw_key.decode("latin-1").lower(), raw_value.decode("latin-1")
        seen = headers.get(k)
        if seen is None:
            headers[k] = v
        elif isinstance(seen, list):
            seen.append(v)
        else:
            headers[k] = [seen, v]
    return headers


def extract_request_event(
    request: RequestSummary,
    response: ResponseSummary,
    *,
    trust_proxy: bool = False,
) -> RequestEvent:
    req = request.request
    referrer = req.headers.get("referer") or req.headers.get("referrer")
    return RequestEvent(
        request_id=request.request_id,
        hostname=request_hostname(req, trust_proxy),
        remote_address=client_address(req, trust_proxy),
        method=req.method,
        url=request_url(req),
        http_version=req.scope.get("http_version", "1.1"),
        status_code=str(response.status_code),
        referrer=referrer,
        headers=header_map(req),
        body=request.body,
        user_agent=req.headers.get("user-agent"),
        received_at=request.received_at,
        response_time_ms=round(response.duration_ms, 3),
    )
