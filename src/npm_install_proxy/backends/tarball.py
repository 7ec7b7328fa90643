"""Backend for pre-downloaded package tarballs (``.tgz``)."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import tarfile
import zlib
from pathlib import Path
from typing import Optional

from ..errors import UnreadableSource
from ..registry.models import CatalogEntry, SourceKind
from .base import MANIFEST_NAME, Backend, parse_manifest

logger = logging.getLogger("npm_install_proxy.backends.tarball")

GZIP_MAGIC = b"\x1f\x8b"
_HASH_CHUNK = 1024 * 1024


def is_gzip_file(path: Path) -> bool:
    """Return True if *path* is a regular file starting with the gzip magic."""
    if not path.is_file():
        return False
    try:
        with open(path, "rb") as f:
            return f.read(2) == GZIP_MAGIC
    except OSError:
        return False


def _is_manifest_member(member: tarfile.TarInfo) -> bool:
    # npm packs everything under one top-level directory, normally "package/"
    parts = [p for p in member.name.split("/") if p not in ("", ".")]
    return member.isfile() and len(parts) == 2 and parts[1] == MANIFEST_NAME


def read_tarball_manifest(path: Path) -> dict:
    """Stream *path* until the package manifest and return it parsed."""
    raw: Optional[bytes] = None
    try:
        with tarfile.open(path, mode="r|gz") as tar:
            for member in tar:
                if _is_manifest_member(member):
                    f = tar.extractfile(member)
                    if f is not None:
                        raw = f.read()
                    break
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise UnreadableSource(path, f"corrupt archive: {e}") from e

    if raw is None:
        raise UnreadableSource(path, f"no {MANIFEST_NAME} in archive")
    return parse_manifest(raw, path)


def file_digests(path: Path) -> tuple[str, str]:
    """Return (sha1 hex shasum, sha512 SRI integrity) of *path*."""
    sha1 = hashlib.sha1()
    sha512 = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
            sha1.update(chunk)
            sha512.update(chunk)
    integrity = "sha512-" + base64.b64encode(sha512.digest()).decode("ascii")
    return sha1.hexdigest(), integrity


class TarballBackend(Backend):
    """Serves the original archive bytes so client-side integrity checks hold."""

    @property
    def kind(self) -> SourceKind:
        return SourceKind.TARBALL

    async def try_register(self, path: Path) -> list[CatalogEntry]:
        return await asyncio.to_thread(self._inspect, Path(path))

    def _inspect(self, path: Path) -> list[CatalogEntry]:
        if not is_gzip_file(path):
            return []

        manifest = read_tarball_manifest(path)
        try:
            shasum, integrity = file_digests(path)
        except OSError as e:
            raise UnreadableSource(path, str(e)) from e

        entry = CatalogEntry(
            name=manifest["name"],
            version=manifest["version"],
            source_kind=self.kind,
            source_location=path.resolve(),
            manifest=manifest,
            shasum=shasum,
            integrity=integrity,
        )
        logger.debug("Tarball %s provides %s@%s", path, entry.name, entry.version)
        return [entry]
