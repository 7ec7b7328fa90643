"""npm install proxy – localhost npm registry to run ``npm install`` without network"""

__version__ = "0.1.0"

from .backends import Backend, DirectoryBackend, TarballBackend, default_backends
from .config import ProxySettings, load_settings
from .errors import (
    BindFailure,
    PackageNotFound,
    ProxyError,
    ServiceStateError,
    StreamFailure,
    UnreadableSource,
)
from .parallel import TaskResult, run_bounded
from .registry import (
    Catalog,
    CatalogEntry,
    Packument,
    Registry,
    Service,
    ServiceBinding,
    ServiceState,
    SourceKind,
    create_app,
)

__all__ = [
    # Core
    "Registry",
    "Service",
    "ServiceBinding",
    "ServiceState",
    "create_app",
    "Catalog",
    "CatalogEntry",
    "Packument",
    "SourceKind",
    # Backends
    "Backend",
    "DirectoryBackend",
    "TarballBackend",
    "default_backends",
    # Errors
    "ProxyError",
    "UnreadableSource",
    "PackageNotFound",
    "BindFailure",
    "StreamFailure",
    "ServiceStateError",
    # Utilities
    "ProxySettings",
    "load_settings",
    "TaskResult",
    "run_bounded",
    "__version__",
]
