from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from .primitives import normalize_cell

# Typing:
# Getter pulls one value out of a (normalized) row mapping.
# Converter turns that value into the typed field value.
Getter = Callable[[Mapping[str, Any]], Any]
Converter = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Any given field's mapping rules."""
    out_name: str               # column name this field is stored under.
    getter: Getter              # how to fetch this field's raw value.
    converter: Converter        # how to convert this field's raw value (must not raise on bad data).


def column(name: str) -> Getter:
    """Getter for a single named CSV column."""
    return lambda r: r.get(name)


@dataclass(frozen=True, slots=True)
class RowMapper:
    """
    Map a single row of fields onto canonical names and types.

    Mapping never rejects: every converter fails open to a default or `None`.
    Rejection is left entirely to validation.
    """
    fields: Sequence[FieldSpec]     # every output field, in output order.
    aliases: Mapping[str, str]      # input column -> canonical column, for renamed columns.

    def normalize(self, raw_row: Mapping[str, Any]) -> dict[str, Any]:
        """
        Strip keys and cells, then apply `aliases`.

        Keys that are `None` (the overflow bucket of a ragged CSV row) are dropped.
        Later columns win on a name clash, like a plain `dict` would.
        """
        normalized: dict[str, Any] = {}
        for k, v in raw_row.items():
            if k is None:
                continue
            kk = str(k).strip()
            normalized[self.aliases.get(kk, kk)] = normalize_cell(v)
        return normalized

    def map(self, raw_row: Mapping[str, Any]) -> dict[str, Any]:
        """Returns one value per `FieldSpec`, keyed by `out_name`."""
        normalized = self.normalize(raw_row)
        return {f.out_name: f.converter(f.getter(normalized)) for f in self.fields}
