"""Base backend interface for local package sources."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..errors import UnreadableSource
from ..registry.models import CatalogEntry, SourceKind

MANIFEST_NAME = "package.json"


class Backend(ABC):
    """Turns one kind of local filesystem source into catalog entries.

    Backends hold no state. ``try_register`` returns an empty list when the
    path is not of the backend's kind and raises ``UnreadableSource`` when it
    is, but cannot be read.
    """

    @property
    @abstractmethod
    def kind(self) -> SourceKind:
        """Return the source kind this backend produces."""

    @abstractmethod
    async def try_register(self, path: Path) -> list[CatalogEntry]:
        """Inspect *path* and return the entries it provides."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def parse_manifest(raw: bytes | str, source: Path) -> dict[str, Any]:
    """Parse and validate a ``package.json`` payload read from *source*."""
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise UnreadableSource(source, f"invalid {MANIFEST_NAME}: {e}") from e

    if not isinstance(data, dict):
        raise UnreadableSource(source, f"{MANIFEST_NAME} is not a JSON object")

    for key in ("name", "version"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise UnreadableSource(source, f"{MANIFEST_NAME} has no valid '{key}'")

    return data
