"""
Mapping template configuration.

Loads mapping templates from YAML files and provides a builder for
assembling templates in code.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from amr_ingest.core.errors import ConfigurationError
from amr_ingest.core.models import CustomFieldSpec, MappingTemplate


class TemplateConfigLoader:
    """
    Loads a mapping template from a YAML configuration file.

    Expected YAML format:
    ```yaml
    owner: regional-lab
    name: whonet-wide
    layout: wide
    breakpoints:
      standard: CLSI
      version: "2024"

    columns:
      Organism: organism
      Specimen: specimen_type
      Date: collection_date
      Ward type: ward_type

    custom_fields:
      ward_type:
        type: enum
        allowed_values: [in, out]
        severity: warning
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the template config loader.

        Args:
            config_path: Path to the YAML template file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Template file not found: {config_path}")

    def load_template(self) -> MappingTemplate:
        """
        Parse the YAML file into a MappingTemplate.

        Raises:
            ConfigurationError: If YAML is invalid or the template fails validation
        """
        with open(self.config_path, encoding="utf-8") as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config, dict) or "columns" not in config:
            raise ConfigurationError(
                f"Template file {self.config_path} must contain a 'columns' section"
            )

        custom_fields = [
            self._parse_custom_field(name, definition)
            for name, definition in (config.get("custom_fields") or {}).items()
        ]
        breakpoints = config.get("breakpoints") or {}

        data: dict[str, Any] = {
            "owner": config.get("owner", "default"),
            "name": config.get("name", self.config_path.stem),
            "version": config.get("version", 1),
            "columns": {str(k): str(v) for k, v in (config.get("columns") or {}).items()},
            "custom_fields": custom_fields,
            "required_fields": config.get("required_fields"),
            "breakpoint_standard": breakpoints.get("standard"),
            "breakpoint_version": (
                str(breakpoints["version"]) if breakpoints.get("version") is not None else None
            ),
            "layout": config.get("layout", "auto"),
        }
        try:
            return MappingTemplate.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid template {self.config_path}: {e}") from e

    def _parse_custom_field(self, name: str, definition: dict[str, Any] | None) -> CustomFieldSpec:
        """
        Parse a single custom field declaration.

        Raises:
            ConfigurationError: If the declaration is invalid
        """
        definition = dict(definition or {})
        if "params" in definition:
            definition.update(definition.pop("params") or {})
        try:
            return CustomFieldSpec(name=name, **definition)
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid custom field '{name}' in {self.config_path}: {e}"
            ) from e


def load_templates(directory: str | Path) -> list[MappingTemplate]:
    """Load every *.yaml / *.yml template in a directory, sorted by file name."""
    directory = Path(directory)
    paths = sorted([*directory.glob("*.yaml"), *directory.glob("*.yml")])
    return [TemplateConfigLoader(path).load_template() for path in paths]


class TemplateBuilder:
    """
    Programmatically build mapping templates (for testing or dynamic templates).
    """

    def __init__(self, owner: str, name: str):
        """Initialize an empty template configuration."""
        self.owner = owner
        self.name = name
        self.columns: dict[str, str] = {}
        self.custom_fields: list[CustomFieldSpec] = []
        self.required_fields: list[str] | None = None
        self.breakpoint_standard: str | None = None
        self.breakpoint_version: str | None = None
        self.layout = "auto"

    def map_column(self, source: str, target: str) -> "TemplateBuilder":
        """Map a source column to a standard or custom target field."""
        self.columns[source] = target
        return self

    def add_custom_field(
        self,
        source: str,
        name: str,
        field_type: str = "string",
        **options: Any,
    ) -> "TemplateBuilder":
        """Declare a custom field and map a source column to it."""
        self.custom_fields.append(CustomFieldSpec(name=name, type=field_type, **options))
        self.columns[source] = name
        return self

    def with_breakpoints(self, standard: str, version: str) -> "TemplateBuilder":
        self.breakpoint_standard = standard
        self.breakpoint_version = version
        return self

    def with_layout(self, layout: str) -> "TemplateBuilder":
        self.layout = layout
        return self

    def require(self, *fields: str) -> "TemplateBuilder":
        self.required_fields = list(fields)
        return self

    def build(self) -> MappingTemplate:
        """Build and validate the template."""
        return MappingTemplate(
            owner=self.owner,
            name=self.name,
            columns=dict(self.columns),
            custom_fields=list(self.custom_fields),
            required_fields=self.required_fields,
            breakpoint_standard=self.breakpoint_standard,
            breakpoint_version=self.breakpoint_version,
            layout=self.layout,
        )
