"""Client address geolocation over a third-party JSON lookup service."""
from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .flags import flag_emoji
from .logging_config import get_logger
from .models import FallbackLocation, LocationResult, ResolvedLocation

logger = get_logger(__name__)

LOCAL_EMOJI = "🏠"
FAILURE_EMOJI = "🕳️"
UNKNOWN_STATUS_EMOJI = "🕳️"

# Echoed by the service; not part of the location itself.
TRANSPORT_FIELDS = ("status", "query")


def location_from_payload(payload: Any) -> LocationResult:
    if not isinstance(payload, dict):
        return FallbackLocation(country_emoji=FAILURE_EMOJI)

    status = payload.get("status")
    if status == "fail":
        return FallbackLocation(country_emoji=LOCAL_EMOJI)
    if status != "success":
        return FallbackLocation(country_emoji=UNKNOWN_STATUS_EMOJI)

    result: Dict[str, Any] = {k: v for k, v in payload.items() if k not in TRANSPORT_FIELDS}
    result["countryEmoji"] = flag_emoji(result.get("countryCode"))
    try:
        return ResolvedLocation.model_validate(result)
    except ValidationError as exc:
        logger.warning("Malformed geolocation payload: %s", exc.errors())
        return FallbackLocation(country_emoji=FAILURE_EMOJI)


class GeoResolver:
    """Resolves an IP address to a LocationResult.

    Each call performs exactly one GET request. Failures of any kind are
    turned into a fallback location; resolve() never raises.
    """

    def __init__(self, client: httpx.AsyncClient, url_template: str = "http://ip-api.com/json/{ip}"):
        self.client = client
        self.url_template = url_template

    def url_for(self, ip: str) -> str:
        return self.url_template.format(ip=quote(ip, safe=":"))

    async def resolve(self, ip: Optional[str]) -> LocationResult:
        # Missing peer address: nothing to look up.
        if not ip:
            return FallbackLocation(country_emoji=LOCAL_EMOJI)

        try:
            r = await self.client.get(self.url_for(ip))
            r.raise_for_status()
            payload = r.json()
        except Exception as ex:
            logger.warning("Geolocation lookup failed for %s: %r", ip, ex)
            return FallbackLocation(country_emoji=FAILURE_EMOJI)

        return location_from_payload(payload)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_resolver(url_template: str, timeout_s: Optional[float] = None) -> GeoResolver:
    if timeout_s is None:
        client = httpx.AsyncClient(follow_redirects=True)
    else:
        client = httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)
    return GeoResolver(client, url_template)
