from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from pageview_pipeline.parsing.payload import PageviewPayload


@dataclass(frozen=True, slots=True)
class MappedPageview:
    """
    A CSV row mapped onto the `pageviews` column names, typed but not yet validated.

    Text fields hold `None` when not provided (never `""`), except the
    required-with-default ones (`added_iso`, `path`, `user_agent`).
    """
    # identity & timing
    page_id: str
    added_iso: str
    session_id: str | None
    hostname: str | None

    # page context
    path: str
    hash: str | None
    query_string: str | None
    document_title: str | None
    document_referrer: str | None

    # referrer analytics (derived while mapping)
    referrer_domain: str | None
    referrer_category: str | None

    # visitor classification
    is_internal_referrer: bool
    is_unique: bool
    is_bot: bool

    # device & browser
    device_type: str
    browser_name: str | None
    browser_version: str | None
    os_name: str | None
    os_version: str | None
    viewport_width: int | None
    viewport_height: int | None
    screen_width: int | None
    screen_height: int | None

    # locale & environment
    language: str | None
    timezone: str | None
    user_agent: str
    country_code: str | None

    # marketing attribution
    utm_source: str | None
    utm_medium: str | None
    utm_campaign: str | None
    utm_content: str | None
    utm_term: str | None

    # engagement
    duration_seconds: int
    time_on_page_seconds: int | None
    scrolled_percentage: int | None
    visibility_changes: int

    def to_mapping(self) -> Mapping[str, Any]:
        """Field values keyed by column name, ready for schema validation."""
        return asdict(self)


@dataclass(frozen=True, slots=True)
class MappedRow:
    """
    Mapper output plus transformation metadata.

    `original_page_id` is only set when `page_id_replaced` is `True`, and is
    for the run log only (it is never written to the store).
    """
    pageview: MappedPageview
    page_id_replaced: bool = False
    original_page_id: str | None = None


@dataclass(frozen=True, slots=True)
class ValidRow:
    """Validation passed. `record` is the only shape the batch inserter accepts."""
    record: PageviewPayload


@dataclass(frozen=True, slots=True)
class RejectRow:
    """Validation failed. `reason_detail` is `field: message` pairs joined by `; `."""
    reason_detail: str


ValidationResult = ValidRow | RejectRow
