"""
Format and encoding detection for uploaded files.

Detection order: declared format, magic bytes, file extension, then
delimiter frequency analysis on the decoded text.
"""

import codecs
import csv
import io

from amr_ingest.core.errors import CorruptSource, UnsupportedFormat
from amr_ingest.core.models import SourceFile
from amr_ingest.observability.logger import get_logger

logger = get_logger(__name__)

MAGIC_BYTES: tuple[tuple[bytes, str], ...] = (
    (b"SQLite format 3\x00", "whonet-db"),
    (b"PK\x03\x04", "spreadsheet"),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "spreadsheet"),
)

EXTENSIONS: dict[str, str] = {
    "csv": "delimited",
    "tsv": "delimited",
    "tab": "delimited",
    "txt": "delimited",
    "xlsx": "spreadsheet",
    "xlsm": "spreadsheet",
    "xls": "spreadsheet",
    "sqlite": "whonet-db",
    "sqlite3": "whonet-db",
    "db": "whonet-db",
    "json": "structured",
    "xml": "structured",
}

CANDIDATE_DELIMITERS = (",", "\t", ";", "|")

BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)

SNIFF_LINES = 20


class FormatDetector:
    """
    Sniffs a SourceFile's format, encoding and delimiter.

    Never reads past the bytes already in memory; all methods are pure.
    """

    def detect_encoding(self, source: SourceFile) -> str:
        """
        Determine the text encoding.

        A byte-order mark wins, then the declared encoding, then UTF-16
        when the leading bytes are interleaved with NULs, else UTF-8.
        """
        head = source.content[:4]
        for bom, encoding in BOMS:
            if head.startswith(bom):
                return encoding
        if source.encoding:
            return source.encoding

        sample = source.content[:200]
        if sample and sample.count(b"\x00") >= len(sample) // 4:
            # BOM-less UTF-16: ASCII text leaves every other byte NUL
            return "utf-16-le" if sample[1:2] == b"\x00" else "utf-16-be"
        return "utf-8"

    def decode(self, source: SourceFile) -> str:
        """
        Decode the file bytes as text.

        Raises:
            CorruptSource: If the bytes are invalid in the detected encoding
        """
        encoding = self.detect_encoding(source)
        try:
            return source.content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise CorruptSource(
                f"Cannot decode {source.name} as {encoding}: {e}", file_name=source.name
            ) from e

    def detect_format(self, source: SourceFile) -> str:
        """
        Determine the file format.

        Raises:
            UnsupportedFormat: If no rule identifies the format
            CorruptSource: If text sniffing is needed and decoding fails
        """
        if source.declared_format:
            return source.declared_format

        for magic, file_format in MAGIC_BYTES:
            if source.content.startswith(magic):
                logger.debug(f"Detected {file_format} for {source.name} by magic bytes")
                return file_format

        by_extension = EXTENSIONS.get(source.extension)
        if by_extension in ("spreadsheet", "whonet-db"):
            # Binary containers are only trusted with matching magic bytes
            raise UnsupportedFormat(
                f"{source.name} has a .{source.extension} extension but no matching signature",
                file_name=source.name,
            )
        if by_extension:
            logger.debug(f"Detected {by_extension} for {source.name} by extension")
            return by_extension

        text = self.decode(source)
        stripped = text.lstrip()
        if stripped[:1] in ("[", "{", "<"):
            return "structured"

        if self.sniff_delimiter(text) is not None:
            return "delimited"

        raise UnsupportedFormat(
            f"Could not determine the format of {source.name}; declare it explicitly",
            file_name=source.name,
        )

    def sniff_delimiter(self, text: str) -> str | None:
        """
        Pick the delimiter that splits the first lines most consistently.

        A candidate qualifies when every sampled line splits into the same
        number (> 1) of fields; among qualifying candidates the widest wins.
        """
        lines = [line for line in text.splitlines() if line.strip()][:SNIFF_LINES]
        if not lines:
            return None

        best: tuple[int, str] | None = None
        for delimiter in CANDIDATE_DELIMITERS:
            try:
                widths = {len(row) for row in csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter)}
            except csv.Error:
                continue
            if len(widths) != 1:
                continue
            width = widths.pop()
            if width > 1 and (best is None or width > best[0]):
                best = (width, delimiter)
        return best[1] if best else None
