"""
Reader for WHONET-style single-file SQLite exports.

An export bundles an isolate table, an optional organism table and an
optional long-format result table. The reader joins them into one wide row
per isolate: isolate columns, the organism display name, and one column per
antibiotic result named the way wide lab exports name them (AMP_MIC,
GEN_ND10, CIP_SIR). Exports that already store results as isolate columns
are read as they are.
"""

import os
import sqlite3
import tempfile
from collections.abc import Iterator
from contextlib import closing

from amr_ingest.core.errors import CorruptSource
from amr_ingest.core.models import RawRecord, SourceFile
from amr_ingest.observability.logger import get_logger

from .spreadsheet_reader import cell_to_text

logger = get_logger(__name__)

ISOLATE_TABLES = ("isolates", "isolate")
ORGANISM_TABLES = ("organisms", "organism")
RESULT_TABLES = ("results", "result", "susceptibility", "susceptibilities")

ISOLATE_KEYS = ("isolate_id", "isolate_number", "isol_num", "id")
ORGANISM_KEYS = ("org_code", "organism_code", "code", "org")
ORGANISM_REFS = ("organism", "org", "org_code", "organism_code")
ORGANISM_NAMES = ("org_name", "organism_name", "name")
ANTIBIOTIC_COLUMNS = ("antibiotic", "antibiotic_code", "drug", "abx")
VALUE_COLUMNS = ("value", "result", "measurement")
METHOD_COLUMNS = ("method", "test_method")
INTERPRETATION_COLUMNS = ("interpretation", "sir", "category")

METHOD_SUFFIXES = {
    "mic": "MIC",
    "disk": "ND",
    "disc": "ND",
    "zone": "ND",
    "etest": "E",
    "e-test": "E",
    "sir": "SIR",
    "interpretation": "SIR",
}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _pick(columns: list[str], candidates: tuple[str, ...]) -> str | None:
    lowered = {c.lower(): c for c in columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


class WhonetReader:
    """
    Reads a WHONET-style SQLite export into RawRecords.

    Resumption uses the database's own row ids: a record's row number is its
    isolate rowid minus one, so resuming at offset n reads rowid > n and
    never scans the rows already processed.
    """

    def read(self, source: SourceFile, offset: int = 0) -> Iterator[RawRecord]:
        fd, path = tempfile.mkstemp(suffix=".sqlite")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(source.content)
            with closing(sqlite3.connect(f"file:{path}?mode=ro", uri=True)) as conn:
                conn.row_factory = sqlite3.Row
                try:
                    yield from self._read_rows(conn, source, offset)
                except sqlite3.DatabaseError as e:
                    raise CorruptSource(
                        f"Cannot read WHONET database {source.name}: {e}", file_name=source.name
                    ) from e
        finally:
            os.unlink(path)

    def _read_rows(
        self, conn: sqlite3.Connection, source: SourceFile, offset: int
    ) -> Iterator[RawRecord]:
        tables = {
            row["name"].lower(): row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        isolate_table = next((tables[t] for t in ISOLATE_TABLES if t in tables), None)
        if isolate_table is None:
            raise CorruptSource(
                f"{source.name} has no isolate table (found: {sorted(tables.values())})",
                file_name=source.name,
            )
        organism_table = next((tables[t] for t in ORGANISM_TABLES if t in tables), None)
        result_table = next((tables[t] for t in RESULT_TABLES if t in tables), None)

        organism_names = self._organism_names(conn, organism_table)
        isolate_columns = self._columns(conn, isolate_table)
        isolate_key = _pick(isolate_columns, ISOLATE_KEYS)
        organism_ref = _pick(isolate_columns, ORGANISM_REFS)

        results_query = self._results_query(conn, result_table) if isolate_key else None
        logger.debug(
            f"WHONET export {source.name}: isolates={isolate_table}, "
            f"organisms={organism_table}, results={result_table}"
        )

        cursor = conn.execute(
            f"SELECT rowid AS isolate_rowid, * FROM {_quote(isolate_table)} "
            "WHERE rowid > ? ORDER BY rowid",
            (offset,),
        )
        for row in cursor:
            row_number = row["isolate_rowid"] - 1
            values = {column: cell_to_text(row[column]) for column in isolate_columns}

            if organism_ref and organism_names:
                code = values.get(organism_ref)
                values["organism_name"] = organism_names.get((code or "").lower())

            if results_query is not None:
                for column, value in self._results(conn, results_query, row[isolate_key]):
                    values[column] = value

            yield RawRecord(row_number=row_number, values=values)

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> list[str]:
        return [row["name"] for row in conn.execute(f"PRAGMA table_info({_quote(table)})")]

    def _organism_names(self, conn: sqlite3.Connection, table: str | None) -> dict[str, str]:
        if table is None:
            return {}
        columns = self._columns(conn, table)
        key, name = _pick(columns, ORGANISM_KEYS), _pick(columns, ORGANISM_NAMES)
        if key is None or name is None:
            return {}
        return {
            str(row[0]).lower(): row[1]
            for row in conn.execute(f"SELECT {_quote(key)}, {_quote(name)} FROM {_quote(table)}")
            if row[0] is not None
        }

    def _results_query(self, conn: sqlite3.Connection, table: str | None) -> str | None:
        if table is None:
            return None
        columns = self._columns(conn, table)
        key = _pick(columns, ISOLATE_KEYS)
        antibiotic = _pick(columns, ANTIBIOTIC_COLUMNS)
        value = _pick(columns, VALUE_COLUMNS)
        if key is None or antibiotic is None or value is None:
            logger.warning(f"Result table {table} lacks isolate/antibiotic/value columns; ignored")
            return None
        method = _pick(columns, METHOD_COLUMNS)
        interpretation = _pick(columns, INTERPRETATION_COLUMNS)
        selected = [
            _quote(antibiotic),
            _quote(value),
            _quote(method) if method else "NULL",
            _quote(interpretation) if interpretation else "NULL",
        ]
        return (
            f"SELECT {', '.join(selected)} FROM {_quote(table)} "
            f"WHERE {_quote(key)} = ? ORDER BY rowid"
        )

    @staticmethod
    def _results(conn: sqlite3.Connection, query: str, isolate_id) -> Iterator[tuple[str, str | None]]:
        for antibiotic, value, method, interpretation in conn.execute(query, (isolate_id,)):
            if antibiotic is None:
                continue
            code = str(antibiotic).strip().upper()
            suffix = METHOD_SUFFIXES.get(str(method).strip().lower()) if method else None
            text = cell_to_text(value)
            category = cell_to_text(interpretation)
            if category and suffix != "SIR":
                # Lab interpretation with its measurement, e.g. "R (>=32)"
                text = f"{category} ({text})" if text else category
            yield (f"{code}_{suffix}" if suffix else code), text
