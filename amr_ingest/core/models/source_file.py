"""
SourceFile model representing an uploaded laboratory file (ephemeral).
"""

import hashlib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

FileFormat = Literal["delimited", "spreadsheet", "whonet-db", "structured"]


class SourceFile(BaseModel):
    """
    Immutable bytes of an uploaded surveillance file plus parse options.

    Created at upload, discarded after the batch finishes; never persisted.
    Only its checksum survives, on the ImportBatch.

    Attributes:
        name: Original file name (used for extension sniffing)
        content: Raw file bytes
        declared_format: Format declared by the caller; overrides sniffing
        encoding: Declared text encoding (BOM detection wins when present)
        sheet_name: Spreadsheet sheet name or 0-based index
        header_row: 0-based offset of the header row (delimited and spreadsheet)
        delimiter: Explicit delimiter for delimited text
        record_element: XML element name holding one record
    """

    name: str = Field(..., min_length=1)
    content: bytes = Field(..., repr=False)
    declared_format: FileFormat | None = None
    encoding: str | None = None
    sheet_name: str | int | None = None
    header_row: int = Field(0, ge=0)
    delimiter: str | None = Field(None, min_length=1, max_length=1)
    record_element: str | None = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "name": "lab_export_2024Q1.csv",
                "declared_format": "delimited",
                "encoding": "utf-8",
                "header_row": 0,
                "delimiter": ",",
            }
        }

    @classmethod
    def from_path(cls, path: str | Path, **options) -> "SourceFile":
        """Read a file from disk into a SourceFile."""
        path = Path(path)
        return cls(name=path.name, content=path.read_bytes(), **options)

    @property
    def checksum(self) -> str:
        """SHA-256 fingerprint of the file bytes."""
        return hashlib.sha256(self.content).hexdigest()

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower().lstrip(".")

    @property
    def size(self) -> int:
        return len(self.content)
