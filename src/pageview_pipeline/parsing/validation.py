from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from pageview_pipeline.parsing.payload import PageviewPayload
from pageview_pipeline.parsing.types import MappedPageview, RejectRow, ValidRow, ValidationResult


def validate_pageview(pageview: MappedPageview) -> ValidationResult:
    """
    Validate a mapped pageview in two phases.

    1st: critical pre-check (timestamp present, path present and rooted). Any failure here
         returns immediately, full validation is not run.
    2nd: full schema validation via `PageviewPayload`. Every violation across every field
         is reported, not just the first one.

    Never raises on bad data: returns `ValidRow` or `RejectRow`.
    """
    critical = check_critical_fields(pageview)
    if critical:
        return RejectRow(reason_detail=format_field_errors(critical))

    try:
        record = PageviewPayload.model_validate(dict(pageview.to_mapping()))
    except ValidationError as e:
        return RejectRow(reason_detail=format_validation_errors(e.errors()))

    return ValidRow(record=record)


def check_critical_fields(pageview: MappedPageview) -> list[tuple[str, str]]:
    """
    Cheap fail-fast checks. Returns `(field, message)` pairs, empty when all pass.

    These are the same rules full validation enforces, just checked first so the
    common broken-export cases get a specific message quickly.
    """
    errors: list[tuple[str, str]] = []

    if not pageview.added_iso:
        errors.append(("added_iso", "Added ISO timestamp is required and cannot be empty"))

    if not pageview.path:
        errors.append(("path", "Path is required and cannot be empty"))
    elif not pageview.path.startswith("/"):
        errors.append(("path", 'Path must start with "/"'))

    return errors


def format_field_errors(errors: Iterable[tuple[str, str]]) -> str:
    """`field: message` pairs joined by `; `."""
    return "; ".join(f"{field}: {message}" for field, message in errors)


def format_validation_errors(errors: Iterable[Mapping[str, Any]]) -> str:
    """Format pydantic error dicts as `field.path: message` joined by `; `."""
    pairs: list[tuple[str, str]] = []
    for err in errors:
        field = ".".join(str(p) for p in err.get("loc", ())) or "__root__"
        pairs.append((field, str(err.get("msg", "invalid value"))))
    return format_field_errors(pairs)
