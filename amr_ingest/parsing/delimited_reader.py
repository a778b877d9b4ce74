"""
Delimited text reader (comma, tab, semicolon or pipe separated with a header row).
"""

import csv
import io
from collections.abc import Iterator

from amr_ingest.core.errors import CorruptSource
from amr_ingest.core.models import RawRecord, SourceFile

from .detector import FormatDetector


def unique_headers(raw_headers: list) -> list[str]:
    """
    Clean header cells: strip, name blanks positionally, suffix duplicates.

    ["Organism", "", "AMP", "AMP"] -> ["Organism", "column_2", "AMP", "AMP_2"]
    """
    headers: list[str] = []
    seen: dict[str, int] = {}
    for idx, raw in enumerate(raw_headers, start=1):
        name = str(raw).strip() if raw is not None else ""
        if not name:
            name = f"column_{idx}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


def build_record(row_number: int, headers: list[str], cells: list) -> RawRecord:
    """Zip a data row to the header, padding short rows and keeping extra cells."""
    values: dict[str, str | None] = {}
    for idx, header in enumerate(headers):
        cell = cells[idx] if idx < len(cells) else None
        values[header] = cell if cell not in ("", None) else None
    for idx in range(len(headers), len(cells)):
        if cells[idx] not in ("", None):
            values[f"_extra_{idx + 1}"] = cells[idx]
    return RawRecord(row_number=row_number, values=values)


class DelimitedReader:
    """
    Reads delimited text into RawRecords.

    Resumable: read(offset=n) re-decodes the file and skips the first n data
    rows, so a paused batch continues exactly after its checkpoint.
    """

    def __init__(self, detector: FormatDetector | None = None):
        self.detector = detector or FormatDetector()

    def read(self, source: SourceFile, offset: int = 0) -> Iterator[RawRecord]:
        """
        Yield one RawRecord per data row.

        Args:
            source: File to read
            offset: Number of data rows to skip (resume cursor)

        Raises:
            CorruptSource: If the text cannot be decoded or parsed
        """
        text = self.detector.decode(source)
        delimiter = source.delimiter or self.detector.sniff_delimiter(text) or ","

        reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
        try:
            for _ in range(source.header_row):
                next(reader, None)
            header_cells = next(reader, None)
            if header_cells is None:
                return
            headers = unique_headers(header_cells)

            row_number = 0
            for cells in reader:
                if not any(cell.strip() for cell in cells):
                    continue
                if row_number >= offset:
                    yield build_record(row_number, headers, [cell.strip() for cell in cells])
                row_number += 1
        except csv.Error as e:
            raise CorruptSource(
                f"Malformed delimited text in {source.name} near line {reader.line_num}: {e}",
                file_name=source.name,
                offset=reader.line_num,
            ) from e
