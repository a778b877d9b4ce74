"""
Date parsing for laboratory exports.

Lab systems write dates as ISO strings, locale-specific day/month strings,
datetimes with a time part, or spreadsheet-converted timestamps.
"""

from datetime import date, datetime

from dateutil import parser as date_parser

_ISO_FORMATS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y%m%d")


def parse_date(value: object, dayfirst: bool = False) -> date:
    """
    Parse a date-like value.

    Args:
        value: str, date or datetime
        dayfirst: Interpret ambiguous "01/02/2024" as 1 February

    Returns:
        The parsed date

    Raises:
        ValueError: If the value cannot be parsed as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Cannot parse {value!r} as a date")

    text = value.strip()
    for fmt in _ISO_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return date_parser.parse(text, dayfirst=dayfirst).date()
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse '{text}' as a date: {e}") from e
