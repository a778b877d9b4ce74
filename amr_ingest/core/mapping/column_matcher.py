"""
Column matching for auto-map mode.

Source headers are matched to target fields in a fixed precedence:

1. exact: normalized header equals the normalized target name
2. prefix: the normalized header starts with a target name, or is an
   unambiguous leading part of exactly one target name
3. synonym: the normalized header equals a configured synonym

Each pass runs over every header before the next pass starts, so an exact
match always beats a prefix match claimed by an earlier column. A target is
assigned to at most one header.
"""

from collections.abc import Iterable, Sequence
from pathlib import Path

import yaml

from amr_ingest.core.errors import ConfigurationError
from amr_ingest.core.models import STANDARD_FIELDS
from amr_ingest.utils.text import normalize_name

MIN_PREFIX_LENGTH = 3


def load_synonyms(path: str | Path) -> dict[str, list[str]]:
    """
    Load a synonym table from YAML.

    Expected YAML format:
    ```yaml
    synonyms:
      specimen_type: [specimen, sample type, spec type]
      collection_date: [date, sample date, date collected]
    ```
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Synonym file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    synonyms = config.get("synonyms", {}) if isinstance(config, dict) else None
    if not isinstance(synonyms, dict):
        raise ConfigurationError(f"{path} must contain a 'synonyms' mapping")

    table: dict[str, list[str]] = {}
    for target, names in synonyms.items():
        if not isinstance(names, list):
            raise ConfigurationError(f"Synonyms for '{target}' must be a list")
        table[str(target)] = [str(name) for name in names]
    return table


class ColumnMatcher:
    """
    Matches source headers to target fields.

    Args:
        targets: Target field names (standard fields by default)
        synonyms: Target field to alternative header spellings
    """

    def __init__(
        self,
        targets: Sequence[str] = STANDARD_FIELDS,
        synonyms: dict[str, list[str]] | None = None,
    ):
        self.targets = tuple(targets)
        self._normalized = {target: normalize_name(target) for target in self.targets}
        self._synonyms: dict[str, str] = {}
        for target, names in (synonyms or {}).items():
            if target not in self._normalized:
                continue
            for name in names:
                # First target listing a synonym keeps it
                self._synonyms.setdefault(normalize_name(name), target)

    def match_exact(self, header: str) -> str | None:
        key = normalize_name(header)
        for target, normalized in self._normalized.items():
            if normalized == key:
                return target
        return None

    def match_prefix(self, header: str, available: Iterable[str] | None = None) -> str | None:
        key = normalize_name(header)
        if len(key) < MIN_PREFIX_LENGTH:
            return None
        candidates = list(available) if available is not None else list(self.targets)

        # "Organism name" -> organism: the longest target the header starts with
        extending = [t for t in candidates if key.startswith(self._normalized[t])]
        if extending:
            return max(extending, key=lambda t: len(self._normalized[t]))

        # "Facil" -> facility, but "Specimen" is ambiguous between three targets
        truncated = [t for t in candidates if self._normalized[t].startswith(key)]
        if len(truncated) == 1:
            return truncated[0]
        return None

    def match_synonym(self, header: str) -> str | None:
        return self._synonyms.get(normalize_name(header))

    def match(self, header: str) -> str | None:
        """Match a single header, ignoring what other headers claimed."""
        return self.match_exact(header) or self.match_prefix(header) or self.match_synonym(header)

    def match_all(self, headers: Iterable[str]) -> dict[str, str]:
        """
        Match a header row.

        Returns:
            Source header to target field, for every header that matched
        """
        headers = list(headers)
        assigned: dict[str, str] = {}
        claimed: set[str] = set()

        def claim(header: str, target: str | None) -> None:
            if target is not None and target not in claimed:
                assigned[header] = target
                claimed.add(target)

        for header in headers:
            claim(header, self.match_exact(header))

        for header in headers:
            if header not in assigned:
                available = [t for t in self.targets if t not in claimed]
                claim(header, self.match_prefix(header, available))

        for header in headers:
            if header not in assigned:
                claim(header, self.match_synonym(header))

        return assigned
