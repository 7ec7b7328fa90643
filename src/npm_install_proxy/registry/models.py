"""Catalog and wire models for the npm install proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer


class SourceKind(str, Enum):
    TARBALL = "tarball"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class CatalogEntry:
    """A single (name, version) known to the registry."""
    name: str
    version: str
    source_kind: SourceKind
    source_location: Path
    manifest: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    shasum: Optional[str] = None
    integrity: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    @property
    def unscoped_name(self) -> str:
        return self.name.rsplit("/", 1)[-1]

    @property
    def tarball_filename(self) -> str:
        return f"{self.unscoped_name}-{self.version}.tgz"


class Catalog:
    """In-memory package catalog.

    Versions of a package keep their registration order. Registering an
    existing (name, version) replaces the old entry and moves it to the end,
    so the last registration is always the latest.
    """

    def __init__(self) -> None:
        self._packages: dict[str, dict[str, CatalogEntry]] = {}

    def add(self, entry: CatalogEntry) -> Optional[CatalogEntry]:
        versions = self._packages.setdefault(entry.name, {})
        replaced = versions.pop(entry.version, None)
        versions[entry.version] = entry
        return replaced

    def get(self, name: str, version: str) -> Optional[CatalogEntry]:
        return self._packages.get(name, {}).get(version)

    def versions(self, name: str) -> list[CatalogEntry]:
        return list(self._packages.get(name, {}).values())

    def latest(self, name: str) -> Optional[CatalogEntry]:
        versions = self.versions(name)
        return versions[-1] if versions else None

    def names(self) -> list[str]:
        return list(self._packages.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __iter__(self) -> Iterator[CatalogEntry]:
        for versions in self._packages.values():
            yield from versions.values()

    def __len__(self) -> int:
        return sum(len(v) for v in self._packages.values())


class DistInfo(BaseModel):
    tarball: str
    shasum: Optional[str] = None
    integrity: Optional[str] = None

    @model_serializer(mode="wrap")
    def _drop_unknown_hashes(self, handler) -> dict[str, Any]:
        return {k: v for k, v in handler(self).items() if v is not None}


class VersionDocument(BaseModel):
    """One entry of a packument's ``versions`` map.

    Manifest fields (dependencies, bin, engines, ...) pass through as extras
    so the installer can resolve the dependency tree from metadata alone.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    version: str
    dist: DistInfo


class Packument(BaseModel):
    """Registry document returned for ``GET /<name>``."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    dist_tags: dict[str, str] = Field(alias="dist-tags")
    versions: dict[str, VersionDocument]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
