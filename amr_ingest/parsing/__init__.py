"""
Format detection and parsing of uploaded laboratory files.
"""

from .delimited_reader import DelimitedReader
from .detector import FormatDetector
from .file_reader import FileReader, RecordStream
from .spreadsheet_reader import SpreadsheetReader
from .structured_reader import StructuredReader
from .whonet_reader import WhonetReader

__all__ = [
    "FormatDetector",
    "FileReader",
    "RecordStream",
    "DelimitedReader",
    "SpreadsheetReader",
    "WhonetReader",
    "StructuredReader",
]
