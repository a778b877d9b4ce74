"""
Structured data reader: JSON array-of-objects and XML with a record element.
"""

import json
import xml.etree.ElementTree as ET
from collections import Counter
from collections.abc import Iterator
from typing import Any

from amr_ingest.core.errors import CorruptSource
from amr_ingest.core.models import RawRecord, SourceFile

from .detector import FormatDetector
from .spreadsheet_reader import cell_to_text

# Wrapper keys accepted around a JSON record array
JSON_CONTAINER_KEYS = ("records", "data", "isolates", "rows", "items")


def _to_text(value: Any) -> str | None:
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return cell_to_text(value)


def _local_name(tag: str) -> str:
    """Strip an XML namespace: '{urn:x}Isolate' -> 'Isolate'."""
    return tag.rsplit("}", 1)[-1]


class StructuredReader:
    """
    Reads JSON or XML into RawRecords.

    JSON: a top-level array of objects, or an object wrapping one under a
    key such as "records". XML: every element named by
    SourceFile.record_element (or, undeclared, the most frequent child tag
    of the root) is one record; its attributes and child element texts
    become the values.
    """

    def __init__(self, detector: FormatDetector | None = None):
        self.detector = detector or FormatDetector()

    def read(self, source: SourceFile, offset: int = 0) -> Iterator[RawRecord]:
        text = self.detector.decode(source).lstrip("\ufeff").lstrip()
        if text.startswith("<"):
            records = self._xml_records(text, source)
        else:
            records = self._json_records(text, source)

        for row_number, values in enumerate(records):
            if row_number >= offset:
                yield RawRecord(row_number=row_number, values=values)

    def _json_records(self, text: str, source: SourceFile) -> list[dict[str, str | None]]:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptSource(f"Invalid JSON in {source.name}: {e}", file_name=source.name) from e

        if isinstance(document, dict):
            document = next(
                (document[key] for key in JSON_CONTAINER_KEYS if isinstance(document.get(key), list)),
                None,
            )
        if not isinstance(document, list):
            raise CorruptSource(
                f"{source.name} is not a JSON array of objects", file_name=source.name
            )

        records = []
        for idx, item in enumerate(document):
            if not isinstance(item, dict):
                raise CorruptSource(
                    f"{source.name}: element {idx} is {type(item).__name__}, expected object",
                    file_name=source.name,
                    offset=idx,
                )
            records.append({str(key): _to_text(value) for key, value in item.items()})
        return records

    def _xml_records(self, text: str, source: SourceFile) -> list[dict[str, str | None]]:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise CorruptSource(f"Invalid XML in {source.name}: {e}", file_name=source.name) from e

        record_tag = source.record_element
        if record_tag is None:
            child_tags = Counter(_local_name(child.tag) for child in root)
            if not child_tags:
                return []
            record_tag = child_tags.most_common(1)[0][0]

        records = []
        for element in root.iter():
            if _local_name(element.tag) != record_tag:
                continue
            values: dict[str, str | None] = {
                _local_name(key): cell_to_text(value) for key, value in element.attrib.items()
            }
            for child in element:
                values[_local_name(child.tag)] = cell_to_text(child.text)
            records.append(values)
        return records
