from __future__ import annotations

from typing import Any, Mapping

from pageview_pipeline.parsing.primitives import (
    convert_to_page_id,
    int_or_default,
    normalize_cell,
    parse_country_code,
    parse_flag,
    parse_optional_int,
    parse_optional_text,
    text_or_default,
)
from pageview_pipeline.parsing.referrers import derive_referrer
from pageview_pipeline.parsing.schema import FieldSpec, RowMapper, column
from pageview_pipeline.parsing.types import MappedPageview, MappedRow


# Only rows with this `datapoint` are pageviews; exports also carry events.
PAGEVIEW_DATAPOINT = "pageview"

# Export columns that are named differently in the store.
_PAGEVIEW_INPUT_ALIASES: dict[str, str] = {
    "uuid": "page_id",
    "is_robot": "is_bot",
    "query": "query_string",
    "lang_language": "language",
}

# Export-only columns, never stored. Listed for reference: the mapper only reads
# the columns its `FieldSpec`s ask for, so these (and any other extras) are ignored.
EXPORT_ONLY_COLUMNS = frozenset({
    "referrer_hostname",
    "referrer_path",
    "path_and_query",
    "lang_region",
    "datapoint",
    "added_date",
    "added_unix",
    "hostname_original",
})


def _text(name: str) -> FieldSpec:
    return FieldSpec(name, column(name), parse_optional_text)


def _int(name: str) -> FieldSpec:
    return FieldSpec(name, column(name), parse_optional_int)


def _flag(name: str) -> FieldSpec:
    return FieldSpec(name, column(name), parse_flag)


# the final page_id and the referrer fields are derived in `map_csv_row_to_pageview`.
pageview_mapper = RowMapper(
    aliases=_PAGEVIEW_INPUT_ALIASES,
    fields=[
        _text("page_id"),

        # critical fields: kept as strings (possibly empty) for the validator to judge.
        FieldSpec("added_iso", column("added_iso"), text_or_default("")),
        FieldSpec("path", column("path"), text_or_default("")),
        FieldSpec("user_agent", column("user_agent"), text_or_default("")),
        FieldSpec("device_type", column("device_type"), lambda v: text_or_default("desktop")(v).lower()),

        _text("session_id"),
        _text("hostname"),

        _text("hash"),
        _text("query_string"),
        _text("document_title"),
        _text("document_referrer"),

        _flag("is_unique"),
        _flag("is_bot"),

        _text("browser_name"),
        _text("browser_version"),
        _text("os_name"),
        _text("os_version"),
        _int("viewport_width"),
        _int("viewport_height"),
        _int("screen_width"),
        _int("screen_height"),

        _text("language"),
        _text("timezone"),
        FieldSpec("country_code", column("country_code"), parse_country_code),

        _text("utm_source"),
        _text("utm_medium"),
        _text("utm_campaign"),
        _text("utm_content"),
        _text("utm_term"),

        # engagement: required columns default to 0 when missing/unparseable.
        FieldSpec("duration_seconds", column("duration_seconds"), int_or_default(0)),
        _int("time_on_page_seconds"),
        _int("scrolled_percentage"),
        FieldSpec("visibility_changes", column("visibility_changes"), int_or_default(0)),
    ],
)


def is_pageview_row(raw: Mapping[str, Any]) -> bool:
    """Whether a raw export row is a pageview (vs. an event or anything else)."""
    for k, v in raw.items():
        if k is not None and str(k).strip() == "datapoint":
            return normalize_cell(v) == PAGEVIEW_DATAPOINT
    return False


def map_csv_row_to_pageview(raw: Mapping[str, Any]) -> MappedRow:
    """
    Map a raw export row onto the `pageviews` columns.

    - no I/O, never raises on bad data (converters fail open)
    - a non-canonical `uuid` is replaced with a generated page id, the old value is
      kept on the result for audit logging only
    - referrer domain/category are derived against the row's own hostname
    """
    values = pageview_mapper.map(raw)

    raw_page_id = values.pop("page_id")
    page_id, replaced = convert_to_page_id(raw_page_id)

    referrer_domain, referrer_category = derive_referrer(values["document_referrer"], values["hostname"])

    pageview = MappedPageview(
        page_id=page_id,
        referrer_domain=referrer_domain,
        referrer_category=referrer_category,
        is_internal_referrer=False,     # not derivable from an export
        **values,
    )
    return MappedRow(
        pageview=pageview,
        page_id_replaced=replaced,
        original_page_id=raw_page_id if replaced else None,
    )
