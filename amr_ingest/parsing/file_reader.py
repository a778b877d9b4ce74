"""
Generic file reader dispatching to the format-specific readers.
"""

from collections.abc import Iterator

from amr_ingest.core.errors import CorruptSource, UnsupportedFormat
from amr_ingest.core.models import RawRecord, SourceFile
from amr_ingest.observability import metrics
from amr_ingest.observability.logger import get_logger

from .delimited_reader import DelimitedReader
from .detector import FormatDetector
from .spreadsheet_reader import SpreadsheetReader
from .structured_reader import StructuredReader
from .whonet_reader import WhonetReader

logger = get_logger(__name__)


class RecordStream:
    """
    Lazy, restartable sequence of RawRecords for one SourceFile.

    Every iteration re-opens the file from the start; from_offset() re-opens
    it at a checkpointed row offset.
    """

    def __init__(self, reader, source: SourceFile, file_format: str):
        self._reader = reader
        self.source = source
        self.file_format = file_format

    def __iter__(self) -> Iterator[RawRecord]:
        return self.from_offset(0)

    def from_offset(self, offset: int) -> Iterator[RawRecord]:
        """
        Raises:
            CorruptSource: If the container turns out to be unreadable
                           (invalid JSON/XML, missing sheet or table)
        """
        try:
            for record in self._reader.read(self.source, offset=offset):
                metrics.increment_counter(metrics.rows_parsed_total, file_format=self.file_format)
                yield record
        except CorruptSource as e:
            metrics.increment_counter(metrics.source_failures_total, error_type=type(e).__name__)
            raise


class FileReader:
    """
    Generic reader supporting delimited, spreadsheet, WHONET-db and
    structured formats.
    """

    def __init__(self, detector: FormatDetector | None = None):
        """
        Initialize file reader.

        Args:
            detector: Format detector (a default one is created if omitted)
        """
        self.detector = detector or FormatDetector()
        self.readers = {
            "delimited": DelimitedReader(self.detector),
            "spreadsheet": SpreadsheetReader(),
            "whonet-db": WhonetReader(),
            "structured": StructuredReader(self.detector),
        }

    def open(self, source: SourceFile) -> RecordStream:
        """
        Detect the format and return a record stream.

        Detection and, for text formats, decoding happen eagerly so that
        UnsupportedFormat and CorruptSource surface before any row is produced.

        Raises:
            UnsupportedFormat: If the format cannot be determined
            CorruptSource: If the bytes cannot be decoded
        """
        try:
            file_format = self.detector.detect_format(source)
            if file_format in ("delimited", "structured"):
                self.detector.decode(source)
        except (UnsupportedFormat, CorruptSource) as e:
            metrics.increment_counter(metrics.source_failures_total, error_type=type(e).__name__)
            raise

        reader = self.readers.get(file_format)
        if reader is None:
            raise UnsupportedFormat(f"Unsupported file format: {file_format}", file_name=source.name)

        logger.info(
            f"Opened {source.name} as {file_format}",
            extra={"file_format": file_format, "size_bytes": source.size, "checksum": source.checksum},
        )
        return RecordStream(reader, source, file_format)

    def read(self, source: SourceFile, offset: int = 0) -> Iterator[RawRecord]:
        """Open the file and iterate its records from a row offset."""
        return self.open(source).from_offset(offset)
