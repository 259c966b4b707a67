"""Static responses and the route table that binds them."""
from __future__ import annotations

import html
from typing import Callable, List, NamedTuple, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from .extractor import request_hostname

ROBOTS_TXT = "User-agent: *\nAllow: /"

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{hostname}</title>
</head>
<body>
<main>
<h1>{hostname}</h1>
<form id="login" method="post" action="{login_path}">
<label for="username">Username</label>
<input id="username" name="username" type="text" autocomplete="username">
<label for="password">Password</label>
<input id="password" name="password" type="password" autocomplete="current-password">
<button type="submit">Sign in</button>
</form>
</main>
<script>
document.getElementById("username").focus();
</script>
</body>
</html>
"""


def render_page(hostname: str, login_path: str = "/login") -> str:
    return PAGE_TEMPLATE.format(
        hostname=html.escape(hostname),
        login_path=html.escape(login_path, quote=True),
    )


async def robots(request: Request) -> Response:
    return PlainTextResponse(ROBOTS_TXT)


async def home(request: Request) -> Response:
    settings = request.app.state.settings
    hostname = request_hostname(request, settings.trust_proxy)
    return HTMLResponse(render_page(hostname, settings.login_path))


async def catch_all(request: Request, path: str) -> Response:
    return await home(request)


class Route(NamedTuple):
    methods: Sequence[str]
    path: str
    endpoint: Callable


# Order matters: the catch-all must come last.
ROUTES: List[Route] = [
    Route(["GET", "HEAD"], "/robots.txt", robots),
    Route(ALL_METHODS, "/", home),
    Route(ALL_METHODS, "/{path:path}", catch_all),
]


def register_routes(app: FastAPI, routes: Sequence[Route] = ROUTES) -> None:
    for route in routes:
        app.add_api_route(
            route.path,
            route.endpoint,
            methods=list(route.methods),
            include_in_schema=False,
        )
