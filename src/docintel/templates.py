"""Reusable processing templates: packaged system templates plus user-defined ones."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Literal
from uuid import uuid4

import yaml

from .models import ProcessingConfiguration

logger = logging.getLogger(__name__)

TEMPLATE_VERSION = "1.0.0"
SYSTEM_TEMPLATES_RESOURCE = "templates.yaml"

TemplateCategory = Literal["system", "user"]


class TemplateNotFoundError(LookupError):
    """Raised when a template id is unknown."""


class TemplateLoadError(RuntimeError):
    """Raised when a template file cannot be parsed."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class TemplateMetadata:
    author: str | None = None
    tags: list[str] = field(default_factory=list)
    usage_count: int = 0
    last_used: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "author": self.author,
            "tags": list(self.tags),
            "usageCount": self.usage_count,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "TemplateMetadata":
        payload = payload or {}
        tags = payload.get("tags") or []
        if not isinstance(tags, list):
            tags = [tags]
        return cls(
            author=payload.get("author"),
            tags=[str(tag) for tag in tags],
            usage_count=int(payload.get("usageCount") or 0),
            last_used=payload.get("lastUsed"),
        )


@dataclass(slots=True)
class ProcessingTemplate:
    id: str
    name: str
    description: str
    category: str
    configuration: ProcessingConfiguration
    version: str = TEMPLATE_VERSION
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    metadata: TemplateMetadata = field(default_factory=TemplateMetadata)

    @property
    def is_system(self) -> bool:
        return self.category == "system"

    def matches(self, query: str) -> bool:
        lowered = query.lower()
        return (
            lowered in self.name.lower()
            or lowered in self.description.lower()
            or any(lowered in tag.lower() for tag in self.metadata.tags)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "configuration": self.configuration.to_dict(),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any], *, category: str | None = None) -> "ProcessingTemplate":
        if not isinstance(payload, dict):
            raise ValueError("Template must be an object")
        template_id = str(payload.get("id") or "").strip()
        name = str(payload.get("name") or "").strip()
        configuration = payload.get("configuration")
        if not template_id or not name or not configuration:
            raise ValueError("Invalid template structure")
        return cls(
            id=template_id,
            name=name,
            description=str(payload.get("description") or ""),
            category=category or str(payload.get("category") or "user"),
            configuration=ProcessingConfiguration.from_dict(configuration),
            version=str(payload.get("version") or TEMPLATE_VERSION),
            created_at=str(payload.get("createdAt") or _now()),
            updated_at=str(payload.get("updatedAt") or _now()),
            metadata=TemplateMetadata.from_dict(payload.get("metadata")),
        )


def load_templates(source: str | Path | None = None, *, category: str = "user") -> list[ProcessingTemplate]:
    """Load templates from a YAML file, or the packaged system templates when ``source`` is None."""

    if source is None:
        text = resources.files("docintel").joinpath("data", SYSTEM_TEMPLATES_RESOURCE).read_text(encoding="utf-8")
        category = "system"
    else:
        path = Path(source)
        if not path.exists():
            return []
        text = path.read_text(encoding="utf-8")

    try:
        data = yaml.safe_load(text) or []
    except yaml.YAMLError as exc:
        raise TemplateLoadError(f"Unable to parse templates from {source or SYSTEM_TEMPLATES_RESOURCE}") from exc
    if not isinstance(data, list):
        raise TemplateLoadError("Template file must contain a list of templates")

    templates: list[ProcessingTemplate] = []
    for item in data:
        try:
            templates.append(ProcessingTemplate.from_dict(item, category=category))
        except ValueError as exc:
            logger.warning("templates.load.skipped source=%s error=%s", source, exc)
    return templates


class TemplateStore:
    """Thread-safe in-memory catalogue of processing templates."""

    def __init__(self, templates: Iterable[ProcessingTemplate] | None = None) -> None:
        self._lock = threading.Lock()
        self._templates: dict[str, ProcessingTemplate] = {}
        for template in templates or []:
            self._templates[template.id] = template

    @classmethod
    def with_defaults(cls, user_templates_path: str | Path | None = None) -> "TemplateStore":
        templates = load_templates()
        if user_templates_path:
            templates.extend(load_templates(user_templates_path, category="user"))
        logger.info("templates.loaded count=%s", len(templates))
        return cls(templates)

    def __len__(self) -> int:
        with self._lock:
            return len(self._templates)

    def list(self, category: str = "all", query: str | None = None) -> list[ProcessingTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        if category != "all":
            templates = [template for template in templates if template.category == category]
        if query:
            templates = [template for template in templates if template.matches(query)]
        return templates

    def get(self, template_id: str) -> ProcessingTemplate:
        with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template '{template_id}' not found")
        return template

    def create_from_configuration(
        self,
        name: str,
        description: str,
        configuration: ProcessingConfiguration,
        *,
        author: str | None = "current-user",
        tags: Iterable[str] | None = None,
    ) -> ProcessingTemplate:
        name = (name or "").strip()
        if not name:
            raise ValueError("Template name is required")
        now = _now()
        template = ProcessingTemplate(
            id=f"user-{uuid4().hex}",
            name=name,
            description=description or "",
            category="user",
            configuration=configuration.copy(),
            created_at=now,
            updated_at=now,
            metadata=TemplateMetadata(author=author, tags=list(tags or []), last_used=now),
        )
        with self._lock:
            self._templates[template.id] = template
        logger.info("templates.created template_id=%s", template.id)
        return template

    def apply(self, template_id: str) -> ProcessingConfiguration:
        with self._lock:
            template = self._templates.get(template_id)
            if template is None:
                raise TemplateNotFoundError(f"Template '{template_id}' not found")
            template.metadata.usage_count += 1
            template.metadata.last_used = _now()
            configuration = template.configuration.copy()
        logger.info("templates.applied template_id=%s usage=%s", template_id, template.metadata.usage_count)
        return configuration

    def update(self, template_id: str, updates: dict[str, Any]) -> ProcessingTemplate:
        template = self.get(template_id)
        if template.is_system:
            raise PermissionError(f"System template '{template_id}' cannot be modified")
        if not isinstance(updates, dict):
            raise ValueError("Template updates must be an object")

        configuration = template.configuration
        if "configuration" in updates:
            configuration = ProcessingConfiguration.from_dict(updates["configuration"], base=configuration)
        name = template.name
        if "name" in updates:
            name = str(updates["name"] or "").strip()
            if not name:
                raise ValueError("Template name is required")
        with self._lock:
            template.name = name
            template.configuration = configuration
            if "description" in updates:
                template.description = str(updates["description"] or "")
            if "metadata" in updates and isinstance(updates["metadata"], dict):
                tags = updates["metadata"].get("tags")
                if isinstance(tags, list):
                    template.metadata.tags = [str(tag) for tag in tags]
            template.version = TEMPLATE_VERSION
            template.updated_at = _now()
        return template

    def delete(self, template_id: str) -> None:
        template = self.get(template_id)
        if template.is_system:
            raise PermissionError(f"System template '{template_id}' cannot be deleted")
        with self._lock:
            self._templates.pop(template_id, None)
        logger.info("templates.deleted template_id=%s", template_id)

    def export(self, template_id: str) -> str:
        return json.dumps(self.get(template_id).to_dict(), indent=2)

    def import_template(self, payload: str | dict[str, Any]) -> ProcessingTemplate:
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Failed to import template: {exc}") from exc
        try:
            source = ProcessingTemplate.from_dict(payload)
        except ValueError as exc:
            raise ValueError(f"Failed to import template: {exc}") from exc

        now = _now()
        template = ProcessingTemplate(
            id=f"imported-{uuid4().hex}",
            name=source.name,
            description=source.description,
            category="user",
            configuration=source.configuration,
            version=source.version,
            created_at=now,
            updated_at=now,
            metadata=TemplateMetadata(
                author="imported",
                tags=list(source.metadata.tags),
                usage_count=0,
                last_used=source.metadata.last_used,
            ),
        )
        with self._lock:
            self._templates[template.id] = template
        logger.info("templates.imported template_id=%s", template.id)
        return template


__all__ = [
    "ProcessingTemplate",
    "TEMPLATE_VERSION",
    "TemplateLoadError",
    "TemplateMetadata",
    "TemplateNotFoundError",
    "TemplateStore",
    "load_templates",
]
