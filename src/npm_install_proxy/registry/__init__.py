"""Local npm registry: catalog, backend dispatch and HTTP service."""

from .core import Registry, version_from_filename
from .models import Catalog, CatalogEntry, Packument, SourceKind, VersionDocument
from .server import Service, ServiceBinding, ServiceState, create_app

__all__ = [
    "Registry",
    "version_from_filename",
    "Catalog",
    "CatalogEntry",
    "Packument",
    "SourceKind",
    "VersionDocument",
    "Service",
    "ServiceBinding",
    "ServiceState",
    "create_app",
]
