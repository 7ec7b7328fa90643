"""Thin asyncio wrapper around the ``npm`` command line client."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

logger = logging.getLogger("npm_install_proxy.npm")

DEFAULT_REGISTRY = "https://registry.npmjs.org/"


class NpmError(Exception):
    """An npm invocation exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        super().__init__(f"npm returned code {returncode}: {' '.join(self.command)}")


class NpmClient:
    """Runs npm subcommands as child processes."""

    def __init__(self, executable: str = "npm"):
        self.executable = executable

    async def _run(self, args: Sequence[str], *, capture: bool = False) -> str:
        cmd = [self.executable, *args]
        logger.debug("Running: %s", " ".join(cmd))
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.PIPE if capture else None,
        )
        stdout, stderr = await proc.communicate()
        output = (stdout or b"").decode(errors="replace")
        if proc.returncode != 0:
            error_output = (stderr or b"").decode(errors="replace")
            logger.warning("npm exited with %d: %s", proc.returncode, " ".join(cmd))
            raise NpmError(cmd, proc.returncode, error_output or output)
        return output

    async def get_registry(self) -> str:
        return (await self._run(["config", "get", "registry"], capture=True)).strip()

    async def set_registry(self, url: str) -> None:
        await self._run(["config", "set", "registry", url], capture=True)

    async def delete_registry(self) -> None:
        await self._run(["config", "delete", "registry"], capture=True)

    async def install(self, args: Sequence[str]) -> None:
        """Run ``npm <args>`` with the terminal attached."""
        await self._run(list(args))


def _is_default_registry(url: Optional[str]) -> bool:
    return not url or url.rstrip("/") == DEFAULT_REGISTRY.rstrip("/")


@asynccontextmanager
async def registry_override(client: NpmClient, url: str) -> AsyncIterator[Optional[str]]:
    """Point npm at *url* for the duration of the block.

    Yields the previously configured registry. On exit the previous value is
    put back, or the key is removed when npm was on its default registry.
    """
    previous = await client.get_registry()
    await client.set_registry(url)
    logger.info("npm registry set to %s", url)
    try:
        yield previous
    finally:
        if _is_default_registry(previous):
            await client.delete_registry()
        else:
            await client.set_registry(previous)
        logger.info("npm registry restored to %s", previous or DEFAULT_REGISTRY)
