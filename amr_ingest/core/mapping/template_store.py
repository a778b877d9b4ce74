"""
Versioned storage for mapping templates.

Templates are keyed by owner + name. Every update stores a new version; a
version referenced by a committed batch is locked and can no longer be
overwritten or deleted.
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from amr_ingest.core.errors import ConfigurationError, TemplateLocked, TemplateNotFound
from amr_ingest.core.models import MappingTemplate
from amr_ingest.observability.logger import get_logger
from amr_ingest.utils.validation import validate_identifier

logger = get_logger(__name__)


class TemplateStore:
    """
    In-memory template store, optionally mirrored to a directory of YAML files.

    With ``directory`` set, existing ``*.yaml`` files written by the store
    are loaded on start and every stored version is written as
    ``{owner}__{name}__v{version}.yaml``.
    """

    def __init__(self, directory: str | Path | None = None):
        self._versions: dict[tuple[str, str], dict[int, MappingTemplate]] = {}
        self._lock = threading.RLock()
        self.directory = Path(directory) if directory is not None else None
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._load_directory()

    # =======================
    # CRUD
    # =======================

    def create(self, template: MappingTemplate) -> MappingTemplate:
        """
        Store a new template as version 1.

        Raises:
            ConfigurationError: If a template with the same owner and name exists
        """
        key = self._key(template.owner, template.name)
        with self._lock:
            if key in self._versions:
                raise ConfigurationError(
                    f"Template {key[0]}/{key[1]} already exists; use update() for a new version"
                )
            stored = template.model_copy(
                update={"version": 1, "locked": False, "created_at": datetime.now(timezone.utc)}
            )
            self._versions[key] = {1: stored}
            self._persist(stored)
        logger.info(f"Created template {key[0]}/{key[1]} v1")
        return stored

    def get(self, owner: str, name: str, version: int | None = None) -> MappingTemplate:
        """
        Fetch a template version (the latest when version is None).

        Raises:
            TemplateNotFound: If the template or version does not exist
        """
        key = self._key(owner, name)
        with self._lock:
            versions = self._versions.get(key)
            if not versions:
                raise TemplateNotFound(owner, name, version)
            if version is None:
                return versions[max(versions)]
            if version not in versions:
                raise TemplateNotFound(owner, name, version)
            return versions[version]

    def update(self, owner: str, name: str, **changes: Any) -> MappingTemplate:
        """
        Store a new version derived from the latest one.

        Returns:
            The new version
        """
        with self._lock:
            latest = self.get(owner, name)
            data = latest.model_dump()
            data.update(changes)
            data.update(
                owner=latest.owner,
                name=latest.name,
                version=latest.version + 1,
                locked=False,
                created_at=datetime.now(timezone.utc),
            )
            stored = MappingTemplate.model_validate(data)
            self._versions[latest.key][stored.version] = stored
            self._persist(stored)
        logger.info(f"Updated template {owner}/{name} to v{stored.version}")
        return stored

    def replace(self, template: MappingTemplate) -> MappingTemplate:
        """
        Overwrite an existing version in place.

        Raises:
            TemplateNotFound: If that version does not exist
            TemplateLocked: If that version is referenced by a committed batch
        """
        with self._lock:
            current = self.get(template.owner, template.name, template.version)
            if current.locked:
                raise TemplateLocked(template.owner, template.name, template.version)
            stored = template.model_copy(update={"locked": False})
            self._versions[current.key][template.version] = stored
            self._persist(stored)
        return stored

    def delete(self, owner: str, name: str) -> None:
        """
        Delete every version of a template.

        Raises:
            TemplateNotFound: If the template does not exist
            TemplateLocked: If any version is locked
        """
        key = self._key(owner, name)
        with self._lock:
            versions = self._versions.get(key)
            if not versions:
                raise TemplateNotFound(owner, name)
            locked = [v for v, template in versions.items() if template.locked]
            if locked:
                raise TemplateLocked(owner, name, min(locked))
            del self._versions[key]
            if self.directory is not None:
                for version in versions:
                    self._path(key[0], key[1], version).unlink(missing_ok=True)
        logger.info(f"Deleted template {owner}/{name}")

    def list_templates(self, owner: str | None = None) -> list[MappingTemplate]:
        """Latest version of every template, optionally for one owner."""
        with self._lock:
            latest = [versions[max(versions)] for versions in self._versions.values()]
        if owner is not None:
            latest = [t for t in latest if t.owner == owner]
        return sorted(latest, key=lambda t: t.key)

    def versions(self, owner: str, name: str) -> list[MappingTemplate]:
        key = self._key(owner, name)
        with self._lock:
            versions = self._versions.get(key)
            if not versions:
                raise TemplateNotFound(owner, name)
            return [versions[v] for v in sorted(versions)]

    def lock(self, owner: str, name: str, version: int) -> MappingTemplate:
        """Mark a version as referenced by a committed batch."""
        with self._lock:
            current = self.get(owner, name, version)
            if current.locked:
                return current
            locked = current.model_copy(update={"locked": True})
            self._versions[current.key][version] = locked
            self._persist(locked)
        logger.debug(f"Locked template {owner}/{name} v{version}")
        return locked

    # =======================
    # YAML MIRROR
    # =======================

    @staticmethod
    def _key(owner: str, name: str) -> tuple[str, str]:
        return (
            validate_identifier(owner, "owner"),
            validate_identifier(name, "template name"),
        )

    def _path(self, owner: str, name: str, version: int) -> Path:
        return self.directory / f"{owner}__{name}__v{version}.yaml"

    def _persist(self, template: MappingTemplate) -> None:
        if self.directory is None:
            return
        path = self._path(template.owner, template.name, template.version)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(template.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)

    def _load_directory(self) -> None:
        for path in sorted(self.directory.glob("*__v*.yaml")):
            with open(path, encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f)
                    template = MappingTemplate.model_validate(data)
                except (yaml.YAMLError, ValueError) as e:
                    raise ConfigurationError(f"Invalid stored template {path}: {e}") from e
            self._versions.setdefault(template.key, {})[template.version] = template
        logger.debug(f"Loaded {sum(len(v) for v in self._versions.values())} template versions")
