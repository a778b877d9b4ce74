"""
Unit tests for format detection and the format-specific readers.
"""

import codecs
import io
import json
import sqlite3
from datetime import datetime

import openpyxl
import pytest

from amr_ingest.core.errors import CorruptSource, UnsupportedFormat
from amr_ingest.core.models import SourceFile
from amr_ingest.parsing import FileReader, FormatDetector
from amr_ingest.parsing.delimited_reader import unique_headers
from amr_ingest.parsing.spreadsheet_reader import cell_to_text


def _source(content: bytes, name: str = "lab_export.csv", **options) -> SourceFile:
    return SourceFile(name=name, content=content, **options)


def _workbook_bytes(*sheets: tuple[str, list[list]]) -> bytes:
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets:
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _whonet_bytes(tmp_path) -> bytes:
    path = tmp_path / "whonet_export.sqlite"
    with sqlite3.connect(path) as conn:
        conn.executescript("""
            CREATE TABLE isolates (isolate_id INTEGER, org TEXT, spec_type TEXT, spec_date TEXT);
            CREATE TABLE organisms (org_code TEXT, org_name TEXT);
            CREATE TABLE results (
                isolate_id INTEGER, antibiotic TEXT, method TEXT, value TEXT, interpretation TEXT
            );
            INSERT INTO isolates VALUES (1, 'eco', 'ur', '2024-01-05');
            INSERT INTO isolates VALUES (2, 'kpn', 'bl', '2024-01-06');
            INSERT INTO organisms VALUES ('eco', 'Escherichia coli');
            INSERT INTO organisms VALUES ('kpn', 'Klebsiella pneumoniae');
            INSERT INTO results VALUES (1, 'gen', 'mic', '4', NULL);
            INSERT INTO results VALUES (1, 'AMP', 'mic', '>=32', 'R');
            INSERT INTO results VALUES (1, 'CIP', 'disk', '25', NULL);
            INSERT INTO results VALUES (2, 'MEM', 'sir', 'S', NULL);
        """)
    conn.close()
    return path.read_bytes()


class TestFormatDetector:
    """Tests for FormatDetector"""

    def test_declared_format_wins(self):
        detector = FormatDetector()
        source = _source(b"[1, 2]", name="data.csv", declared_format="structured")
        assert detector.detect_format(source) == "structured"

    def test_magic_bytes_beat_extension(self):
        detector = FormatDetector()
        source = _source(b"SQLite format 3\x00rest", name="export.csv")
        assert detector.detect_format(source) == "whonet-db"

    @pytest.mark.parametrize("name,expected", [
        ("a.csv", "delimited"),
        ("a.TSV", "delimited"),
        ("a.json", "structured"),
        ("a.xml", "structured"),
    ])
    def test_extension(self, name, expected):
        assert FormatDetector().detect_format(_source(b"x", name=name)) == expected

    def test_binary_extension_without_signature_rejected(self):
        with pytest.raises(UnsupportedFormat):
            FormatDetector().detect_format(_source(b"not a zip", name="export.xlsx"))

    def test_unknown_extension_sniffs_delimiter(self):
        source = _source(b"Organism;Date;AMP\neco;2024-01-05;R\n", name="export.dat")
        assert FormatDetector().detect_format(source) == "delimited"

    def test_unknown_extension_sniffs_structured(self):
        source = _source(b'  [{"Organism": "eco"}]', name="export.dat")
        assert FormatDetector().detect_format(source) == "structured"

    def test_inconclusive_sniff_raises(self):
        with pytest.raises(UnsupportedFormat) as exc_info:
            FormatDetector().detect_format(_source(b"hello world\n", name="notes.dat"))

        assert exc_info.value.file_name == "notes.dat"

    def test_bom_wins_over_declared_encoding(self):
        source = _source(codecs.BOM_UTF8 + b"Organism\n", encoding="latin-1")
        assert FormatDetector().detect_encoding(source) == "utf-8-sig"

    def test_declared_encoding(self):
        source = _source("Organisme\nE. coli répété\n".encode("latin-1"), encoding="latin-1")
        assert "répété" in FormatDetector().decode(source)

    def test_bomless_utf16_detected(self):
        source = _source("Organism,Date\n".encode("utf-16-le"))
        assert FormatDetector().detect_encoding(source) == "utf-16-le"

    def test_undecodable_bytes_raise_corrupt_source(self):
        with pytest.raises(CorruptSource):
            FormatDetector().decode(_source(b"Organism\n\xc3\x28\n"))

    def test_sniff_prefers_consistent_widest_delimiter(self):
        text = "a\tb,c\td\n1\t2,3\t4\n"
        assert FormatDetector().sniff_delimiter(text) == "\t"


class TestDelimitedReader:
    """Tests for delimited text through FileReader"""

    def test_rows_zip_to_header(self):
        stream = FileReader().open(_source(b"Organism,Date,AMP\neco,2024-01-05,R\nkpn,,S\n"))
        records = list(stream)

        assert stream.file_format == "delimited"
        assert [r.row_number for r in records] == [0, 1]
        assert records[0].values == {"Organism": "eco", "Date": "2024-01-05", "AMP": "R"}
        assert records[1].values["Date"] is None

    def test_utf8_bom_is_stripped_from_header(self):
        content = codecs.BOM_UTF8 + b"Organism,AMP\neco,R\n"
        records = list(FileReader().open(_source(content)))
        assert "Organism" in records[0].values

    def test_utf16_with_bom(self):
        content = "Organism\tAMP\neco\tR\n".encode("utf-16")
        records = list(FileReader().open(_source(content, name="export.tsv")))
        assert records[0].values == {"Organism": "eco", "AMP": "R"}

    def test_semicolon_delimited(self):
        records = list(FileReader().open(_source(b"Organism;GEN_MIC\neco;0,5\n")))
        assert records[0].values == {"Organism": "eco", "GEN_MIC": "0,5"}

    def test_explicit_delimiter(self):
        source = _source(b"Organism|AMP\neco|R\n", delimiter="|")
        assert list(FileReader().open(source))[0].values["AMP"] == "R"

    def test_short_rows_padded_and_extra_cells_kept(self):
        records = list(FileReader().open(_source(b"A,B\n1\n1,2,3\n")))
        assert records[0].values == {"A": "1", "B": None}
        assert records[1].values == {"A": "1", "B": "2", "_extra_3": "3"}

    def test_blank_lines_skipped_without_consuming_offsets(self):
        records = list(FileReader().open(_source(b"A,B\n1,2\n\n,\n3,4\n")))
        assert [(r.row_number, r.values["A"]) for r in records] == [(0, "1"), (1, "3")]

    def test_header_row_offset(self):
        source = _source(b"Lab export Q1\nOrganism,AMP\neco,R\n", header_row=1)
        records = list(FileReader().open(source))
        assert records[0].values == {"Organism": "eco", "AMP": "R"}

    def test_resume_from_offset(self):
        stream = FileReader().open(_source(b"A\n1\n2\n3\n"))
        assert [r.values["A"] for r in stream.from_offset(2)] == ["3"]
        assert [r.row_number for r in stream.from_offset(1)] == [1, 2]

    def test_stream_is_restartable(self):
        stream = FileReader().open(_source(b"A\n1\n2\n"))
        assert len(list(stream)) == len(list(stream)) == 2

    def test_empty_file_yields_nothing(self):
        assert list(FileReader().open(_source(b"", declared_format="delimited"))) == []

    def test_corrupt_bytes_fail_before_any_row(self):
        with pytest.raises(CorruptSource):
            FileReader().open(_source(b"Organism\n\xc3\x28\n"))

    def test_unique_headers(self):
        assert unique_headers(["Organism", "", "AMP", "AMP", None]) == [
            "Organism", "column_2", "AMP", "AMP_2", "column_5",
        ]


class TestSpreadsheetReader:
    """Tests for .xlsx workbooks"""

    def test_first_sheet_by_default(self):
        content = _workbook_bytes(
            ("Isolates", [
                ["Organism", "Date", "GEN_MIC", "Age"],
                ["eco", datetime(2024, 1, 5), 0.5, 67],
                [None, None, None, None],
                ["kpn", datetime(2024, 1, 6, 13, 30), 4.0, None],
            ]),
            ("Notes", [["ignored"]]),
        )
        stream = FileReader().open(_source(content, name="export.xlsx"))
        records = list(stream)

        assert stream.file_format == "spreadsheet"
        assert len(records) == 2
        assert records[0].values == {
            "Organism": "eco", "Date": "2024-01-05", "GEN_MIC": "0.5", "Age": "67",
        }
        assert records[1].values["GEN_MIC"] == "4"
        assert records[1].values["Date"] == "2024-01-06T13:30:00"
        assert records[1].row_number == 1

    def test_sheet_by_name_and_header_row(self):
        content = _workbook_bytes(
            ("Summary", [["nothing here"]]),
            ("Results", [["Q1 export"], ["Organism", "AMP"], ["eco", "R"]]),
        )
        source = _source(content, name="export.xlsx", sheet_name="Results", header_row=1)
        assert list(FileReader().open(source))[0].values == {"Organism": "eco", "AMP": "R"}

    def test_sheet_by_index(self):
        content = _workbook_bytes(("A", [["X"], ["1"]]), ("B", [["Y"], ["2"]]))
        source = _source(content, name="export.xlsx", sheet_name=1)
        assert list(FileReader().open(source))[0].values == {"Y": "2"}

    def test_missing_sheet_raises(self):
        content = _workbook_bytes(("A", [["X"], ["1"]]))
        source = _source(content, name="export.xlsx", sheet_name="Missing")
        with pytest.raises(CorruptSource):
            list(FileReader().open(source))

    def test_resume_from_offset(self):
        content = _workbook_bytes(("A", [["X"], ["1"], ["2"], ["3"]]))
        stream = FileReader().open(_source(content, name="export.xlsx"))
        assert [r.values["X"] for r in stream.from_offset(1)] == ["2", "3"]

    def test_truncated_workbook_is_corrupt(self):
        content = _workbook_bytes(("A", [["X"], ["1"]]))
        source = _source(content[:40], name="export.xlsx")
        with pytest.raises(CorruptSource):
            list(FileReader().open(source))

    @pytest.mark.parametrize("value,expected", [
        (None, None),
        (4.0, "4"),
        (0.25, "0.25"),
        (True, "true"),
        ("  ", None),
        (" eco ", "eco"),
    ])
    def test_cell_to_text(self, value, expected):
        assert cell_to_text(value) == expected


class TestWhonetReader:
    """Tests for WHONET-style SQLite exports"""

    def test_results_joined_into_wide_columns(self, tmp_path):
        source = _source(_whonet_bytes(tmp_path), name="whonet.sqlite")
        stream = FileReader().open(source)
        records = list(stream)

        assert stream.file_format == "whonet-db"
        assert len(records) == 2
        first = records[0].values
        assert first["org"] == "eco"
        assert first["organism_name"] == "Escherichia coli"
        assert first["GEN_MIC"] == "4"
        assert first["AMP_MIC"] == "R (>=32)"
        assert first["CIP_ND"] == "25"
        assert records[1].values["MEM_SIR"] == "S"

    def test_resume_from_offset(self, tmp_path):
        source = _source(_whonet_bytes(tmp_path), name="whonet.sqlite")
        records = list(FileReader().open(source).from_offset(1))
        assert [(r.row_number, r.values["org"]) for r in records] == [(1, "kpn")]

    def test_resume_follows_rowids_across_deleted_rows(self, tmp_path):
        """Test row numbers follow the isolate rowid, so deleted rows leave gaps"""
        path = tmp_path / "gaps.sqlite"
        conn = sqlite3.connect(path)
        with conn:
            conn.execute("CREATE TABLE isolates (isolate_id INTEGER, org TEXT)")
            conn.executemany(
                "INSERT INTO isolates VALUES (?, ?)", [(1, "eco"), (2, "kpn"), (3, "pae")]
            )
            conn.execute("DELETE FROM isolates WHERE org = 'kpn'")
        conn.close()
        stream = FileReader().open(_source(path.read_bytes(), name="gaps.sqlite"))

        assert [(r.row_number, r.values["org"]) for r in stream] == [(0, "eco"), (2, "pae")]
        assert [r.values["org"] for r in stream.from_offset(1)] == ["pae"]

    def test_missing_isolate_table_is_corrupt(self, tmp_path):
        path = tmp_path / "other.sqlite"
        with sqlite3.connect(path) as conn:
            conn.execute("CREATE TABLE patients (id INTEGER)")
        conn.close()

        with pytest.raises(CorruptSource) as exc_info:
            list(FileReader().open(_source(path.read_bytes(), name="other.sqlite")))

        assert "no isolate table" in str(exc_info.value)


class TestStructuredReader:
    """Tests for JSON and XML sources"""

    def test_json_array(self):
        content = json.dumps([
            {"Organism": "eco", "AMP": "R", "Age": 67, "Flags": {"esbl": True}},
            {"Organism": "kpn", "AMP": None},
        ]).encode()
        records = list(FileReader().open(_source(content, name="export.json")))

        assert records[0].values["Age"] == "67"
        assert records[0].values["Flags"] == '{"esbl": true}'
        assert records[1].values["AMP"] is None

    def test_json_wrapped_records(self):
        content = json.dumps({"meta": {}, "records": [{"Organism": "eco"}]}).encode()
        records = list(FileReader().open(_source(content, name="export.json")))
        assert records[0].values == {"Organism": "eco"}

    def test_json_non_object_element_is_corrupt(self):
        content = json.dumps([{"Organism": "eco"}, "oops"]).encode()
        with pytest.raises(CorruptSource) as exc_info:
            list(FileReader().open(_source(content, name="export.json")))

        assert exc_info.value.offset == 1

    def test_invalid_json_is_corrupt(self):
        with pytest.raises(CorruptSource):
            list(FileReader().open(_source(b"[{", name="export.json")))

    def test_xml_records_from_attributes_and_children(self):
        content = b"""<?xml version="1.0"?>
            <export xmlns="urn:lab">
              <isolate id="1"><organism>eco</organism><AMP>R</AMP></isolate>
              <isolate id="2"><organism>kpn</organism><AMP/></isolate>
              <footer>2 isolates</footer>
            </export>"""
        records = list(FileReader().open(_source(content, name="export.xml")))

        assert [r.values.get("id") for r in records] == ["1", "2"]
        assert records[0].values["organism"] == "eco"
        assert records[1].values["AMP"] is None

    def test_xml_declared_record_element(self):
        content = b"<root><meta/><meta/><row Organism='eco'/></root>"
        source = _source(content, name="export.xml", record_element="row")
        assert list(FileReader().open(source))[0].values == {"Organism": "eco"}

    def test_xml_resume_from_offset(self):
        content = b"<root><r a='1'/><r a='2'/><r a='3'/></root>"
        stream = FileReader().open(_source(content, name="export.xml"))
        assert [r.values["a"] for r in stream.from_offset(2)] == ["3"]
