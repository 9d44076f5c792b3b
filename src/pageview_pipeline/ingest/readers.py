from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterator, Mapping, NamedTuple


# first data row is row 2: the header is row 1, like a spreadsheet shows it.
FIRST_DATA_ROW = 2


class CsvStructureError(Exception):
    """The file cannot be read as CSV at all (not a row-level validation problem)."""


class CsvRecord(NamedTuple):
    """One data record: its spreadsheet row, the file line it starts on, and its cells."""
    row_number: int
    line_number: int
    values: Mapping[str, Any]


def _newlines_in(values: Mapping[Any, Any]) -> int:
    """Line breaks carried inside quoted cells, surplus cells included."""
    n = 0
    for v in values.values():
        cells = v if isinstance(v, list) else [v]
        n += sum(c.count("\n") for c in cells if isinstance(c, str))
    return n


def stream_csv_dict_rows(path: Path) -> Iterator[CsvRecord]:
    """
    Yields `(row_number, line_number, dict)` for CSV data rows, one at a time.

    - first row is the header, column order is arbitrary
    - ragged rows are tolerated: missing cells are `None`, surplus cells land under the `None` key
    - loose quoting is tolerated (non-strict dialect)
    - blank lines are skipped and not counted, `row_number` numbers data records
    - `line_number` is the physical line the record starts on, it runs ahead of
      `row_number` once a quoted cell spans lines

    Raises `FileNotFoundError` if `path` does not exist, and `CsvStructureError`
    when the file is not readable as UTF-8 CSV.
    """
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    # utf-8-sig: exports from spreadsheet tools often start with a BOM.
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f, skipinitialspace=True, strict=False)
        try:
            for i, row in enumerate(reader, start=FIRST_DATA_ROW):
                yield CsvRecord(i, reader.line_num - _newlines_in(row), row)
        except (csv.Error, UnicodeDecodeError) as e:
            raise CsvStructureError(f"CSV parsing error near line {reader.line_num}: {e}") from e
