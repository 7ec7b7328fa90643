"""FastAPI server speaking the npm registry protocol."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import StreamingResponse

from .. import __version__
from ..errors import BindFailure, PackageNotFound, ServiceStateError, StreamFailure
from .core import Registry, version_from_filename

logger = logging.getLogger("npm_install_proxy.server")

TARBALL_MEDIA_TYPE = "application/octet-stream"


async def _prepend(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    if first:
        yield first
    async for chunk in rest:
        yield chunk


def create_app(registry: Registry) -> FastAPI:
    """Create the registry FastAPI application."""

    app = FastAPI(
        title="npm install proxy",
        description="Local npm registry serving packages from disk",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(PackageNotFound)
    async def package_not_found(request: Request, exc: PackageNotFound):
        logger.debug("404 %s: %s", request.url.path, exc)
        return JSONResponse({"error": "Not found"}, status_code=404)

    @app.exception_handler(StreamFailure)
    async def stream_failure(request: Request, exc: StreamFailure):
        return JSONResponse({"error": str(exc)}, status_code=500)

    @app.get("/-/ping")
    async def ping():
        return {}

    @app.get("/{name:path}/-/{filename}")
    async def get_tarball(name: str, filename: str):
        version = version_from_filename(name, filename)
        if version is None:
            raise PackageNotFound(name)

        stream = registry.get_tarball_stream(name, version)
        # Pull the first chunk so a source that cannot be opened still gets a
        # proper error status instead of a truncated 200.
        try:
            first = await anext(stream)
        except StopAsyncIteration:
            first = b""

        return StreamingResponse(
            _prepend(first, stream),
            media_type=TARBALL_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/{name:path}")
    async def get_packument(name: str):
        packument = registry.lookup_package_metadata(name)
        return JSONResponse(packument.to_wire())

    @app.api_route("/{path:path}", methods=["POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    async def unsupported(path: str):
        # Publishing and other write operations are not served.
        raise PackageNotFound(path)

    return app


class ServiceState(str, Enum):
    CREATED = "created"
    BOUND = "bound"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ServiceBinding:
    """Resolved address of the running listener."""
    scheme: str
    host: str
    port: int

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}/"


class Service:
    """Runs the registry app on an OS-assigned localhost port.

    ``run`` binds and starts serving, ``stop`` shuts down gracefully and is
    safe to call any number of times.
    """

    def __init__(
        self,
        base_url: str = "http://localhost",
        *,
        log_level: str = "info",
        access_log: bool = False,
    ):
        parts = urlsplit(base_url)
        self.scheme = parts.scheme or "http"
        self.host = parts.hostname or "localhost"
        self.log_level = log_level.lower()
        self.access_log = access_log
        self.state = ServiceState.CREATED
        self.binding: Optional[ServiceBinding] = None
        self.listening = asyncio.Event()
        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

    @property
    def url(self) -> str:
        if self.state is not ServiceState.BOUND or self.binding is None:
            raise ServiceStateError(f"Service has no URL while {self.state.value}")
        return self.binding.url

    @property
    def port(self) -> int:
        if self.binding is None:
            raise ServiceStateError(f"Service has no port while {self.state.value}")
        return self.binding.port

    def _bind(self) -> socket.socket:
        try:
            family, socktype, proto, _, address = socket.getaddrinfo(
                self.host, 0, type=socket.SOCK_STREAM
            )[0]
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            raise BindFailure(self.host, 0, str(e)) from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(128)
        except OSError as e:
            sock.close()
            raise BindFailure(self.host, 0, str(e)) from e
        return sock

    async def run(self, registry: Registry) -> ServiceBinding:
        """Bind a listener and serve *registry* until ``stop`` is called."""
        if self.state is not ServiceState.CREATED:
            raise ServiceStateError(f"Service cannot run while {self.state.value}")

        if registry.service_provider is None:
            registry.service_provider = self

        sock = self._bind()
        port = sock.getsockname()[1]

        config = uvicorn.Config(
            create_app(registry),
            log_config=None,
            log_level=self.log_level,
            access_log=self.access_log,
            lifespan="off",
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                error = task.exception() if not task.cancelled() else None
                raise BindFailure(self.host, port, str(error or "server exited during startup"))
            await asyncio.sleep(0.01)

        self._socket = sock
        self._server = server
        self._task = task
        self.binding = ServiceBinding(scheme=self.scheme, host=self.host, port=port)
        self.state = ServiceState.BOUND
        self.listening.set()
        logger.info("Serving npm registry at %s", self.binding.url)
        return self.binding

    async def wait_closed(self) -> None:
        """Wait until the server task finishes (e.g. on SIGINT)."""
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Stop accepting connections and let in-flight responses finish."""
        if self.state is not ServiceState.BOUND:
            return

        self.state = ServiceState.STOPPED
        self.listening.clear()
        server, task = self._server, self._task
        if server is not None:
            server.should_exit = True
        try:
            if task is not None:
                await task
        except Exception:
            logger.exception("npm registry server exited with an error")
        finally:
            if self._socket is not None:
                self._socket.close()
            self._server = self._task = self._socket = None
            self.binding = None
            logger.info("npm registry stopped")
