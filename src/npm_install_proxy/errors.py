"""Exceptions raised by the npm install proxy."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ProxyError(Exception):
    """Base class for all proxy errors."""


class UnreadableSource(ProxyError):
    """A backend recognized the path but could not read a package from it."""

    def __init__(self, path: str | Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot read package from {self.path}: {reason}")


class PackageNotFound(ProxyError):
    """Lookup miss in the catalog."""

    def __init__(self, name: str, version: Optional[str] = None):
        self.name = name
        self.version = version
        label = f"{name}@{version}" if version else name
        super().__init__(f"Package not found: {label}")


class BindFailure(ProxyError):
    """The service could not acquire a listening socket."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Cannot listen on {host}:{port}: {reason}")


class StreamFailure(ProxyError):
    """I/O error while producing tarball bytes."""

    def __init__(self, name: str, version: str, reason: str):
        self.name = name
        self.version = version
        self.reason = reason
        super().__init__(f"Streaming {name}@{version} failed: {reason}")


class ServiceStateError(ProxyError):
    """Operation not valid in the service's current state."""
