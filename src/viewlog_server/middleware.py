"""Middleware components for the viewlog server."""
from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .logging_config import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "x-request-id"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RequestSummary:
    request: Request
    request_id: str
    received_at: str
    body: Any = None


@dataclass(frozen=True)
class ResponseSummary:
    status_code: int
    duration_ms: float


OnComplete = Callable[[RequestSummary, ResponseSummary], None]


def parse_body(body: bytes, content_type: str) -> Any:
    """Decode a JSON or urlencoded form body; anything else gives None."""
    if not body:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return json.loads(body)
        except ValueError:
            return None
    if media_type == "application/x-www-form-urlencoded":
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return None
        form = parse_qs(text, keep_blank_values=True)
        return {k: v[0] if len(v) == 1 else v for k, v in form.items()}
    return None


async def buffer_body(receive: Receive, limit: Optional[int] = None) -> Tuple[bytes, bool, Receive]:
    """Read the request body and return a receive callable replaying it.

    Reading stops as soon as more than ``limit`` bytes are held; the rest of
    the stream is then left to the live ``receive``. The returned flag tells
    whether the whole body was read.
    """
    chunks: List[bytes] = []
    pending: List[Message] = []
    size = 0
    complete = False
    while True:
        message = await receive()
        if message["type"] != "http.request":
            pending.append(message)
            complete = True
            break
        chunk = message.get("body", b"")
        chunks.append(chunk)
        size += len(chunk)
        if not message.get("more_body", False):
            complete = True
            break
        if limit is not None and size > limit:
            break

    body = b"".join(chunks)
    replay: List[Message] = [{"type": "http.request", "body": body, "more_body": not complete}, *pending]

    async def replay_receive() -> Message:
        if replay:
            return replay.pop(0)
        return await receive()

    return body, complete, replay_receive


class ResponseCompletionMiddleware:
    """Calls ``on_complete`` once per exchange, after the response is flushed.

    Assigns the request id (inbound ``X-Request-ID`` or a fresh uuid4 hex),
    echoes it on the response, and optionally buffers the request body so it
    can be parsed into the summary. ``on_complete`` runs synchronously on the
    event loop; anything it raises is logged and dropped.

    Implemented as pure ASGI middleware so the final status is the one that
    actually went out on the wire.
    """

    def __init__(
        self,
        app: ASGIApp,
        on_complete: OnComplete,
        *,
        capture_body: bool = True,
        max_body_bytes: int = 256 * 1024,
    ) -> None:
        self.app = app
        self.on_complete = on_complete
        self.capture_body = capture_body
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        received_at = utc_now_iso()
        request = Request(scope)
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        scope.setdefault("state", {})["request_id"] = rid

        body = None
        if self.capture_body:
            raw, complete, receive = await buffer_body(receive, self.max_body_bytes)
            if complete and len(raw) <= self.max_body_bytes:
                body = parse_body(raw, request.headers.get("content-type", ""))

        summary = RequestSummary(request=request, request_id=rid, received_at=received_at, body=body)
        status_code = 500  # default if we never see a response start
        completed = False

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, completed
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = rid

            await send(message)

            if message["type"] == "http.response.body" and not message.get("more_body", False):
                if not completed:
                    completed = True
                    self._complete(summary, status_code, start)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            if not completed:
                completed = True
                self._complete(summary, status_code, start)

    def _complete(self, summary: RequestSummary, status_code: int, start: float) -> None:
        response = ResponseSummary(
            status_code=status_code,
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        try:
            self.on_complete(summary, response)
        except Exception:
            logger.exception("View hook failed for request %s", summary.request_id)


HARDENING_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self' 'unsafe-inline';"
        "script-src-attr 'none';style-src 'self' https: 'unsafe-inline';"
        "upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware:
    """Sets Permissions-Policy and the usual hardening headers on every response.

    Pure ASGI so the headers also go out on errors: if the app raises before
    starting a response, a plain 500 carrying the headers is sent here and the
    exception re-raised.
    """

    def __init__(self, app: ASGIApp, permissions_policy: str, extra_headers: Optional[Dict[str, str]] = None):
        self.app = app
        self.headers = {"Permissions-Policy": permissions_policy, **HARDENING_HEADERS}
        if extra_headers:
            self.headers.update(extra_headers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = MutableHeaders(scope=message)
                for name, value in self.headers.items():
                    headers[name] = value
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            if not response_started:
                response = PlainTextResponse("Internal Server Error", status_code=500)
                await response(scope, receive, send_wrapper)
            raise
