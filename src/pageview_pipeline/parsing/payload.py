"""
Pydantic schema for a validated pageview.

A `PageviewPayload` instance is the validated record: frozen once built, and the
only shape handed to the batch inserter.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pageview_pipeline.parsing.primitives import PAGE_ID_PATTERN, is_valid_page_id, parse_timestamp_iso


Text255 = Annotated[str, Field(max_length=255)]
# integer columns are postgres `integer` (int4)
PG_INT_MAX = 2_147_483_647

PositiveInt = Annotated[int, Field(gt=0, le=PG_INT_MAX)]
NonNegativeInt = Annotated[int, Field(ge=0, le=PG_INT_MAX)]
DeviceType = Literal["desktop", "mobile", "tablet"]
ReferrerCategory = Literal["Direct", "Search", "Social", "External"]


class PageviewPayload(BaseModel):
    """Every column of a `pageviews` row, with its length/range/format constraints."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # identity & timing
    page_id: str = Field(..., min_length=1)
    added_iso: datetime
    session_id: Text255 | None = None
    hostname: Text255 | None = None

    # page context
    path: str = Field(..., min_length=1, max_length=2000)
    hash: Annotated[str, Field(max_length=1000)] | None = None
    query_string: Annotated[str, Field(max_length=2000)] | None = None
    document_title: Annotated[str, Field(max_length=500)] | None = None
    document_referrer: Annotated[str, Field(max_length=2000)] | None = None

    # referrer analytics
    referrer_domain: Text255 | None = None
    referrer_category: ReferrerCategory | None = None

    # visitor classification
    is_internal_referrer: bool = False
    is_unique: bool = False
    is_bot: bool = False

    # device & browser
    device_type: DeviceType
    browser_name: Annotated[str, Field(max_length=100)] | None = None
    browser_version: Annotated[str, Field(max_length=50)] | None = None
    os_name: Annotated[str, Field(max_length=100)] | None = None
    os_version: Annotated[str, Field(max_length=50)] | None = None
    viewport_width: PositiveInt | None = None
    viewport_height: PositiveInt | None = None
    screen_width: PositiveInt | None = None
    screen_height: PositiveInt | None = None

    # locale & environment (empty user agent is allowed for historical imports)
    language: Annotated[str, Field(max_length=10)] | None = None
    timezone: Annotated[str, Field(max_length=100)] | None = None
    user_agent: str = Field("", max_length=1000)
    country_code: Annotated[str, Field(min_length=2, max_length=2)] | None = None

    # marketing attribution
    utm_source: Text255 | None = None
    utm_medium: Text255 | None = None
    utm_campaign: Text255 | None = None
    utm_content: Text255 | None = None
    utm_term: Text255 | None = None

    # engagement
    duration_seconds: NonNegativeInt = 0
    time_on_page_seconds: NonNegativeInt | None = None
    scrolled_percentage: Annotated[int, Field(ge=0, le=100)] | None = None
    visibility_changes: NonNegativeInt = 0

    @field_validator("page_id")
    @classmethod
    def _page_id_format(cls, v: str) -> str:
        if not is_valid_page_id(v):
            raise ValueError(f"Page ID must match {PAGE_ID_PATTERN}")
        return v

    @field_validator("added_iso", mode="before")
    @classmethod
    def _added_iso_format(cls, v: Any) -> datetime:
        try:
            return parse_timestamp_iso(v)
        except ValueError:
            raise ValueError("Added ISO must be a valid ISO 8601 timestamp with timezone") from None

    @field_validator("path")
    @classmethod
    def _path_rooted(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError('Path must start with "/"')
        return v
