"""Per-request enrichment and emission of view events.

Each finished exchange becomes one detached asyncio task: resolve the client
location (the only await), merge it and the parsed user-agent into the event,
hand the result to the sink. Every exchange ends in exactly one ``view`` or
one ``failed logging`` emission; nothing raised here reaches the request path.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol, Set

from .extractor import extract_request_event
from .logging_config import get_logger
from .middleware import RequestSummary, ResponseSummary
from .models import EnrichedEvent, LocationResult, RequestEvent
from .sink import FAILED_EVENT, VIEW_EVENT, LogSink
from .useragent import parse_user_agent

logger = get_logger(__name__)


class Resolver(Protocol):
    async def resolve(self, ip: Optional[str]) -> LocationResult:
        ...


class ViewPipeline:
    def __init__(
        self,
        resolver: Resolver,
        sink: LogSink,
        *,
        parse_user_agents: bool = True,
        trust_proxy: bool = False,
    ):
        self.resolver = resolver
        self.sink = sink
        self.parse_user_agents = parse_user_agents
        self.trust_proxy = trust_proxy
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def record(self, request: RequestSummary, response: ResponseSummary) -> Optional[asyncio.Task]:
        """Completion hook: extract the event and schedule its enrichment."""
        try:
            event = extract_request_event(request, response, trust_proxy=self.trust_proxy)
        except Exception as exc:
            self._emit_failure(exc, {
                "request-id": request.request_id,
                "status-code": str(response.status_code),
            })
            return None
        return self.submit(event)

    def submit(self, event: RequestEvent) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.process(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process(self, event: RequestEvent) -> None:
        try:
            location = await self.resolver.resolve(event.remote_address)
            user_agent = parse_user_agent(event.user_agent) if self.parse_user_agents else None
            enriched = EnrichedEvent.merge(event, location, user_agent)
            self.sink.emit(VIEW_EVENT, enriched.fields())
        except Exception as exc:
            self._emit_failure(exc, event.fields())

    def _emit_failure(self, exc: Exception, data: Dict[str, Any]) -> None:
        try:
            self.sink.emit(FAILED_EVENT, {"error": repr(exc), "data": data})
        except Exception:
            logger.exception("Could not emit '%s' for %s", FAILED_EVENT, data.get("request-id"))

    async def drain(self) -> None:
        """Wait for every scheduled enrichment to finish."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
