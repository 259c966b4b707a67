from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN = "unknown"


def _hyphenate(name: str) -> str:
    return name.replace("_", "-")


class RequestEvent(BaseModel):
    """One completed request/response exchange, as seen by the logger."""

    model_config = ConfigDict(frozen=True, alias_generator=_hyphenate, populate_by_name=True)

    request_id: Optional[str] = None
    hostname: str = ""
    remote_address: Optional[str] = None

    method: str
    url: str
    http_version: str
    status_code: str

    referrer: Optional[str] = None
    headers: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    body: Any = None
    user_agent: Optional[str] = None

    received_at: str
    response_time_ms: float

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ResolvedLocation(BaseModel):
    """Successful geolocation lookup; unknown service fields are kept verbatim."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    country: str
    country_code: str = Field(alias="countryCode")
    region: str
    region_name: str = Field(alias="regionName")
    city: str
    zip: str
    lat: Any
    lon: Any
    timezone: str
    isp: str
    org: str
    as_: str = Field(alias="as")
    country_emoji: Optional[str] = Field(default=None, alias="countryEmoji")


class FallbackLocation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    country_emoji: str = Field(alias="countryEmoji")


LocationResult = Union[ResolvedLocation, FallbackLocation]


class BrowserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: str = UNKNOWN
    version: str = UNKNOWN


class OSInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: str = UNKNOWN
    version: str = UNKNOWN


class DeviceInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: str = UNKNOWN
    brand: str = UNKNOWN
    model: str = UNKNOWN


class ParsedUserAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw: str = ""
    browser: BrowserInfo = Field(default_factory=BrowserInfo)
    os: OSInfo = Field(default_factory=OSInfo)
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    is_mobile: bool = False
    is_tablet: bool = False
    is_pc: bool = False
    is_bot: bool = False


class EnrichedEvent(RequestEvent):
    user_agent: Union[ParsedUserAgent, str, None] = None
    location: LocationResult

    @classmethod
    def merge(
        cls,
        event: RequestEvent,
        location: LocationResult,
        user_agent: Optional[ParsedUserAgent] = None,
    ) -> "EnrichedEvent":
        data = event.model_dump()
        data["location"] = location
        if user_agent is not None:
            data["user_agent"] = user_agent
        return cls.model_validate(data)
