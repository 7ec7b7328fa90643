"""Backend for unpacked package source directories."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..errors import UnreadableSource
from ..registry.models import CatalogEntry, SourceKind
from .base import MANIFEST_NAME, Backend, parse_manifest

logger = logging.getLogger("npm_install_proxy.backends.directory")


class DirectoryBackend(Backend):
    """Registers a directory with a root ``package.json``.

    The directory itself is the download source; it is packed into a
    tarball only when a client asks for it.
    """

    @property
    def kind(self) -> SourceKind:
        return SourceKind.DIRECTORY

    async def try_register(self, path: Path) -> list[CatalogEntry]:
        return await asyncio.to_thread(self._inspect, Path(path))

    def _inspect(self, path: Path) -> list[CatalogEntry]:
        manifest_path = path / MANIFEST_NAME
        if not path.is_dir() or not manifest_path.is_file():
            return []

        try:
            raw = manifest_path.read_bytes()
        except OSError as e:
            raise UnreadableSource(path, str(e)) from e

        manifest = parse_manifest(raw, manifest_path)
        entry = CatalogEntry(
            name=manifest["name"],
            version=manifest["version"],
            source_kind=self.kind,
            source_location=path.resolve(),
            manifest=manifest,
        )
        logger.debug("Directory %s provides %s@%s", path, entry.name, entry.version)
        return [entry]
