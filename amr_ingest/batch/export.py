"""
Long-format CSV export of normalized records.

One line per antibiotic result (or one line for an isolate without
results), using the standard field names as headers so the file can be
imported again in auto-map mode.
"""

import csv
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import IO, Any

from amr_ingest.core.models import AntibioticResultUnit, NormalizedIsolateUnit
from amr_ingest.observability.logger import get_logger

logger = get_logger(__name__)

ISOLATE_COLUMNS = (
    "specimen_id",
    "patient_id",
    "organism",
    "specimen_type",
    "specimen_source",
    "collection_date",
    "facility",
    "host_species",
)

RESULT_COLUMNS = (
    "antibiotic",
    "method",
    "result_value",
    "interpretation",
    "breakpoint_standard",
    "breakpoint_version",
    "category",
    "provenance",
    "status",
)


class LongFormatExporter:
    """
    Writes normalized records as long-format CSV.

    Fatal records are skipped unless include_fatal is set. Raw results are
    written with an empty interpretation column (the derived category goes
    to the category column) so a re-import interprets them again instead
    of treating them as lab-reported.
    """

    def __init__(self, include_fatal: bool = False):
        self.include_fatal = include_fatal

    def header(self, units: Sequence[NormalizedIsolateUnit]) -> list[str]:
        extra = sorted({name for unit in units for name in unit.extra})
        custom = sorted({name for unit in units for name in unit.custom_fields})
        return ["source_row", *ISOLATE_COLUMNS, *extra, *custom, *RESULT_COLUMNS]

    def rows(self, units: Iterable[NormalizedIsolateUnit]) -> Iterator[dict[str, Any]]:
        for unit in units:
            if unit.fatal and not self.include_fatal:
                continue
            base = {"source_row": unit.row_number}
            for name, value in unit.isolate_fields().items():
                base[name] = value.isoformat() if hasattr(value, "isoformat") else value
            base.update(unit.extra)
            for name, value in unit.custom_fields.items():
                base[name] = value.isoformat() if hasattr(value, "isoformat") else value

            if not unit.results:
                yield base
                continue
            for result in unit.results:
                yield {**base, **self._result_columns(result)}

    @staticmethod
    def _result_columns(result: AntibioticResultUnit) -> dict[str, Any]:
        if result.raw_value is not None:
            value = result.raw_value.text
        elif result.status == "unclassifiable":
            value = result.source_value
        else:
            value = None
        return {
            "antibiotic": result.antibiotic,
            "method": result.method,
            "result_value": value,
            "interpretation": result.category if result.provenance == "pre-interpreted" else None,
            "breakpoint_standard": result.breakpoint_standard,
            "breakpoint_version": result.breakpoint_version,
            "category": result.category,
            "provenance": result.provenance,
            "status": result.status,
        }

    def write(self, units: Sequence[NormalizedIsolateUnit], target: IO[str]) -> int:
        """Write to an open text stream; returns the number of data lines."""
        units = list(units)
        writer = csv.DictWriter(target, fieldnames=self.header(units), extrasaction="ignore")
        writer.writeheader()
        count = 0
        for row in self.rows(units):
            writer.writerow(row)
            count += 1
        return count

    def export(self, units: Sequence[NormalizedIsolateUnit], path: str | Path) -> int:
        """Write to a file; returns the number of data lines."""
        path = Path(path)
        with open(path, "w", encoding="utf-8", newline="") as f:
            count = self.write(units, f)
        logger.info(f"Exported {count} result line(s) to {path}")
        return count
