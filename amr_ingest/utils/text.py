"""
Name normalization shared by column matching and reference lookups.
"""

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_name(value: str) -> str:
    """
    Case-, whitespace- and punctuation-insensitive form of a name.

    >>> normalize_name(" Collection-Date ")
    'collectiondate'
    >>> normalize_name("E. coli")
    'ecoli'
    """
    text = unicodedata.normalize("NFKD", value)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", text.lower())
