"""Backends that turn local sources (tarballs, directories) into catalog entries."""

from .base import Backend, parse_manifest
from .directory import DirectoryBackend
from .packing import pack_directory
from .tarball import TarballBackend


def default_backends() -> list[Backend]:
    """Backends in precedence order, most specific first."""
    return [TarballBackend(), DirectoryBackend()]


__all__ = [
    "Backend",
    "DirectoryBackend",
    "TarballBackend",
    "default_backends",
    "pack_directory",
    "parse_manifest",
]
