"""Backend dispatch and package catalog."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Optional, Protocol

from ..backends.packing import pack_directory
from ..errors import PackageNotFound, StreamFailure
from .models import Catalog, CatalogEntry, DistInfo, Packument, SourceKind, VersionDocument

if TYPE_CHECKING:
    from ..backends.base import Backend

logger = logging.getLogger("npm_install_proxy.registry")

FILE_CHUNK_SIZE = 64 * 1024

# Manifest keys the registry owns in a version document; "_"-prefixed keys are
# install-time bookkeeping and are dropped as well
_RESERVED_KEYS = {"id", "name", "version", "dist"}


class ServiceProvider(Protocol):
    @property
    def url(self) -> str: ...


def version_from_filename(name: str, filename: str) -> Optional[str]:
    """Extract the version from ``<unscoped-name>-<version>.tgz``."""
    prefix = name.rsplit("/", 1)[-1] + "-"
    if not filename.startswith(prefix) or not filename.endswith(".tgz"):
        return None
    version = filename[len(prefix):-len(".tgz")]
    return version or None


async def _stream_file(path: Path, chunk_size: int = FILE_CHUNK_SIZE) -> AsyncIterator[bytes]:
    f = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        f.close()


class Registry:
    """Catalog of locally available packages.

    Paths are offered to backends in the order they were added; the first
    backend that returns entries wins. The service reads through the lookup
    methods and never mutates the catalog.
    """

    def __init__(self, service_provider: Optional[ServiceProvider] = None):
        self.service_provider = service_provider
        self.catalog = Catalog()
        self._backends: list[Backend] = []

    @property
    def backends(self) -> list[Backend]:
        return list(self._backends)

    def add_backend(self, backend: Backend) -> None:
        self._backends.append(backend)

    async def register(self, path: str | Path) -> int:
        """Register the package(s) at *path* and return how many were added.

        Returns 0 when no backend accepts the path. ``UnreadableSource`` from
        an accepting backend propagates.
        """
        path = Path(path)
        for backend in self._backends:
            entries = await backend.try_register(path)
            if not entries:
                continue
            for entry in entries:
                replaced = self.catalog.add(entry)
                if replaced is not None:
                    logger.warning(
                        "%s@%s from %s replaces %s",
                        entry.name, entry.version, entry.source_location, replaced.source_location,
                    )
                else:
                    logger.info("Registered %s@%s (%s)", entry.name, entry.version, entry.source_kind.value)
            return len(entries)

        logger.debug("No backend accepted %s", path)
        return 0

    def get_entry(self, name: str, version: str) -> CatalogEntry:
        entry = self.catalog.get(name, version)
        if entry is None:
            raise PackageNotFound(name, version)
        return entry

    def tarball_url(self, entry: CatalogEntry) -> str:
        if self.service_provider is None:
            raise RuntimeError("Registry has no service provider to build tarball URLs")
        base = str(self.service_provider.url).rstrip("/")
        return f"{base}/{entry.name}/-/{entry.tarball_filename}"

    def _version_document(self, entry: CatalogEntry) -> VersionDocument:
        extra = {k: v for k, v in entry.manifest.items() if k not in _RESERVED_KEYS and not k.startswith("_")}
        return VersionDocument(
            _id=f"{entry.name}@{entry.version}",
            name=entry.name,
            version=entry.version,
            dist=DistInfo(
                tarball=self.tarball_url(entry),
                shasum=entry.shasum,
                integrity=entry.integrity,
            ),
            **extra,
        )

    def lookup_package_metadata(self, name: str) -> Packument:
        """Build the registry document for *name*; raises ``PackageNotFound``."""
        entries = self.catalog.versions(name)
        if not entries:
            raise PackageNotFound(name)

        return Packument(
            _id=name,
            name=name,
            dist_tags={"latest": entries[-1].version},
            versions={e.version: self._version_document(e) for e in entries},
        )

    def get_tarball_stream(self, name: str, version: str) -> AsyncIterator[bytes]:
        """Return the tarball bytes of ``name@version`` as an async stream.

        The lookup happens immediately so a miss raises ``PackageNotFound``
        before any byte is produced. I/O errors while streaming surface as
        ``StreamFailure``.
        """
        entry = self.get_entry(name, version)
        if entry.source_kind is SourceKind.TARBALL:
            source = _stream_file(entry.source_location)
        else:
            source = pack_directory(entry.source_location)
        return self._guard(entry, source)

    async def _guard(self, entry: CatalogEntry, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        try:
            async for chunk in source:
                yield chunk
        except Exception as e:
            logger.error("Streaming %s@%s from %s failed: %s", entry.name, entry.version, entry.source_location, e)
            raise StreamFailure(entry.name, entry.version, str(e)) from e
        finally:
            await source.aclose()
