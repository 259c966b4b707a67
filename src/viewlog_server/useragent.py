from __future__ import annotations

from typing import Optional

from user_agents import parse

from .models import UNKNOWN, BrowserInfo, DeviceInfo, OSInfo, ParsedUserAgent

# ua-parser reports unmatched families as "Other"
_PLACEHOLDERS = {"", "Other"}


def _known(value: Optional[str]) -> str:
    if value is None:
        return UNKNOWN
    value = str(value).strip()
    return UNKNOWN if value in _PLACEHOLDERS else value


def parse_user_agent(raw: Optional[str]) -> ParsedUserAgent:
    """Break a User-Agent header into browser, OS and device parts.

    Empty or unrecognised strings give a breakdown whose fields are all
    "unknown".
    """
    raw = raw or ""
    if not raw.strip():
        return ParsedUserAgent(raw=raw)

    ua = parse(raw)
    return ParsedUserAgent(
        raw=raw,
        browser=BrowserInfo(family=_known(ua.browser.family), version=_known(ua.browser.version_string)),
        os=OSInfo(family=_known(ua.os.family), version=_known(ua.os.version_string)),
        device=DeviceInfo(
            family=_known(ua.device.family),
            brand=_known(ua.device.brand),
            model=_known(ua.device.model),
        ),
        is_mobile=bool(ua.is_mobile),
        is_tablet=bool(ua.is_tablet),
        is_pc=bool(ua.is_pc),
        is_bot=bool(ua.is_bot),
    )
