"""
Reference data configuration loading.

Loads organisms, antibiotics and breakpoint rules from YAML files so a
deployment can ship its own tables without code changes.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from amr_ingest.core.errors import ConfigurationError
from amr_ingest.core.models import Antibiotic, BreakpointRule, Organism
from amr_ingest.observability.logger import get_logger

from .service import InMemoryReferenceData

logger = get_logger(__name__)


class ReferenceDataLoader:
    """
    Loads reference tables from a YAML file.

    Expected YAML format:
    ```yaml
    organisms:
      - code: eco
        name: Escherichia coli
        group: Enterobacterales
        synonyms: ["E.coli", "E. coli"]

    antibiotics:
      - code: GEN
        name: Gentamicin
        synonyms: ["GM"]

    breakpoints:
      - organism: Enterobacterales
        antibiotic: GEN
        method: mic
        standard: CLSI
        version: "2024"
        susceptible: 2
        resistant: 8
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the reference loader.

        Args:
            config_path: Path to the YAML reference file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Reference data file not found: {config_path}")

    def load(self) -> InMemoryReferenceData:
        """
        Parse the YAML file into an InMemoryReferenceData service.

        Raises:
            ConfigurationError: If YAML is invalid or an entry fails validation
        """
        with open(self.config_path, encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"{self.config_path} must contain a mapping")

        organisms = self._parse_section(config, "organisms", Organism)
        antibiotics = self._parse_section(config, "antibiotics", Antibiotic)
        breakpoints = self._parse_section(config, "breakpoints", BreakpointRule)

        logger.info(
            f"Loaded reference data from {self.config_path}: {len(organisms)} organisms, "
            f"{len(antibiotics)} antibiotics, {len(breakpoints)} breakpoints"
        )
        return InMemoryReferenceData(organisms, antibiotics, breakpoints)

    def _parse_section(self, config: dict[str, Any], section: str, model) -> list:
        entries = config.get(section) or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"Section '{section}' must be a list")

        parsed = []
        for idx, entry in enumerate(entries):
            try:
                parsed.append(model.model_validate(entry))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid {section}[{idx}] in {self.config_path}: {e}") from e
        return parsed
