"""
Spreadsheet reader for OOXML (.xlsx) and legacy binary (.xls) workbooks.
"""

import io
import zipfile
from collections.abc import Iterator
from datetime import date, datetime, time

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from amr_ingest.core.errors import CorruptSource
from amr_ingest.core.models import RawRecord, SourceFile
from amr_ingest.observability.logger import get_logger

from .delimited_reader import build_record, unique_headers

logger = get_logger(__name__)

OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def cell_to_text(value) -> str | None:
    """Render a typed cell value as the text a lab export would show."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        # 4.0 -> "4" so MIC values and ids round-trip as typed
        return str(int(value)) if value.is_integer() else repr(value)
    text = str(value).strip()
    return text or None


class SpreadsheetReader:
    """
    Reads one sheet of a workbook into RawRecords.

    The sheet is chosen by SourceFile.sheet_name (name or 0-based index,
    default first sheet) and the header row by SourceFile.header_row.
    Resuming re-opens the workbook and skips to the offset row.
    """

    def read(self, source: SourceFile, offset: int = 0) -> Iterator[RawRecord]:
        if source.content.startswith(OLE2_MAGIC) or source.extension == "xls":
            yield from self._read_xls(source, offset)
        else:
            yield from self._read_xlsx(source, offset)

    def _read_xlsx(self, source: SourceFile, offset: int) -> Iterator[RawRecord]:
        try:
            workbook = openpyxl.load_workbook(
                io.BytesIO(source.content), read_only=True, data_only=True
            )
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise CorruptSource(f"Cannot open workbook {source.name}: {e}", file_name=source.name) from e

        try:
            sheet = self._select(workbook.sheetnames, source)
            worksheet = workbook[sheet]
            logger.debug(f"Reading sheet '{sheet}' of {source.name}")
            header_index = source.header_row + 1  # openpyxl rows are 1-based

            header_cells = next(
                worksheet.iter_rows(min_row=header_index, max_row=header_index, values_only=True),
                None,
            )
            if header_cells is None:
                return
            headers = unique_headers(list(header_cells))

            rows = worksheet.iter_rows(min_row=header_index + 1, values_only=True)
            yield from self._records(rows, headers, offset)
        finally:
            workbook.close()

    def _read_xls(self, source: SourceFile, offset: int) -> Iterator[RawRecord]:
        try:
            book = xlrd.open_workbook(file_contents=source.content, on_demand=True)
        except xlrd.XLRDError as e:
            raise CorruptSource(f"Cannot open workbook {source.name}: {e}", file_name=source.name) from e

        try:
            sheet = book.sheet_by_name(self._select(book.sheet_names(), source))
            if sheet.nrows <= source.header_row:
                return
            headers = unique_headers(sheet.row_values(source.header_row))

            def rows():
                for idx in range(source.header_row + 1, sheet.nrows):
                    values = []
                    for cell in sheet.row(idx):
                        if cell.ctype == xlrd.XL_CELL_DATE:
                            values.append(xlrd.xldate.xldate_as_datetime(cell.value, book.datemode))
                        elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                            values.append(None)
                        else:
                            values.append(cell.value)
                    yield values

            yield from self._records(rows(), headers, offset)
        finally:
            book.release_resources()

    def _records(self, rows, headers: list[str], offset: int) -> Iterator[RawRecord]:
        row_number = 0
        for cells in rows:
            texts = [cell_to_text(cell) for cell in cells]
            if not any(texts):
                continue
            if row_number >= offset:
                yield build_record(row_number, headers, texts)
            row_number += 1

    @staticmethod
    def _select(sheet_names: list[str], source: SourceFile) -> str:
        if not sheet_names:
            raise CorruptSource(f"Workbook {source.name} has no sheets", file_name=source.name)
        selector = source.sheet_name
        if selector is None:
            return sheet_names[0]
        if isinstance(selector, int):
            if 0 <= selector < len(sheet_names):
                return sheet_names[selector]
        elif selector in sheet_names:
            return selector
        raise CorruptSource(
            f"Sheet {selector!r} not found in {source.name} (sheets: {sheet_names})",
            file_name=source.name,
        )
