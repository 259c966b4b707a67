"""Tests for body handling and the logging sink."""
from __future__ import annotations

import asyncio
import json
import logging

from viewlog_server.middleware import buffer_body, parse_body
from viewlog_server.sink import LoggingSink


def test_parse_json_body():
    assert parse_body(b'{"a": [1, 2]}', "application/json; charset=utf-8") == {"a": [1, 2]}
    assert parse_body(b'{"a": 1}', "application/vnd.api+json") == {"a": 1}


def test_parse_invalid_json_body():
    assert parse_body(b"{not json", "application/json") is None


def test_parse_form_body():
    body = b"username=admin&password=hunter2&role=a&role=b&empty="
    assert parse_body(body, "application/x-www-form-urlencoded") == {
        "username": "admin",
        "password": "hunter2",
        "role": ["a", "b"],
        "empty": "",
    }


def test_other_bodies_are_not_parsed():
    assert parse_body(b"\x00\x01", "application/octet-stream") is None
    assert parse_body(b"hello", "text/plain") is None
    assert parse_body(b"", "application/json") is None


def test_buffer_body_replays_chunks():
    messages = [
        {"type": "http.request", "body": b"ab", "more_body": True},
        {"type": "http.request", "body": b"cd", "more_body": False},
        {"type": "http.disconnect"},
    ]

    async def receive():
        return messages.pop(0)

    async def run():
        body, complete, replay = await buffer_body(receive)
        return body, complete, await replay(), await replay()

    body, complete, first, second = asyncio.run(run())
    assert body == b"abcd"
    assert complete is True
    assert first == {"type": "http.request", "body": b"abcd", "more_body": False}
    assert second == {"type": "http.disconnect"}


def test_buffer_body_stops_past_limit():
    """A long stream is not held in memory; the tail stays with the live receive."""
    chunk = b"x" * 1024
    messages = [{"type": "http.request", "body": chunk, "more_body": i < 99} for i in range(100)]
    calls = []

    async def receive():
        calls.append(1)
        return messages.pop(0)

    async def run():
        body, complete, replay = await buffer_body(receive, limit=4096)
        return body, complete, await replay(), await replay()

    body, complete, first, second = asyncio.run(run())
    assert len(body) == 5 * 1024
    assert complete is False
    assert first == {"type": "http.request", "body": body, "more_body": True}
    assert second == {"type": "http.request", "body": chunk, "more_body": True}
    # five chunks buffered, the sixth read through the replay
    assert len(calls) == 6
    assert len(messages) == 94


def test_logging_sink(capsys, caplog):
    sink = LoggingSink("views")
    with caplog.at_level(logging.INFO, logger="viewlog.views"):
        sink.emit("view", {"url": "/", "location": {"countryEmoji": "🏠"}})
        sink.emit("failed logging", {"error": "RuntimeError()", "data": {"url": "/"}})

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert lines[0] == {"service": "views", "event": "view", "url": "/", "location": {"countryEmoji": "🏠"}}
    assert lines[1]["event"] == "failed logging"

    records = [r for r in caplog.records if r.name == "viewlog.views"]
    assert [r.levelno for r in records] == [logging.INFO, logging.ERROR]
    assert records[0].fields == {"url": "/", "location": {"countryEmoji": "🏠"}}
