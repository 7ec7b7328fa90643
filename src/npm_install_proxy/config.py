"""Runtime settings for the npm install proxy."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

ENV_PREFIX = "NPM_INSTALL_PROXY_"


@dataclass
class ProxySettings:
    """Settings for the proxy service and the npm invocation."""
    host: str = "localhost"
    concurrency: int = 100
    npm_executable: str = "npm"
    log_level: str = "INFO"
    access_log: bool = False

    @property
    def base_url(self) -> str:
        return f"http://{self.host}"

    @classmethod
    def from_env(cls, env: Optional[dict[str, str]] = None) -> "ProxySettings":
        src = env if env is not None else os.environ

        def clean(key: str) -> Optional[str]:
            value = src.get(ENV_PREFIX + key)
            if value is None:
                return None
            v = str(value).strip()
            return v or None

        data: dict[str, Any] = {}
        if clean("HOST"):
            data["host"] = clean("HOST")
        if clean("CONCURRENCY"):
            data["concurrency"] = clean("CONCURRENCY")
        if clean("NPM"):
            data["npm_executable"] = clean("NPM")
        if clean("LOG_LEVEL"):
            data["log_level"] = clean("LOG_LEVEL")
        if clean("ACCESS_LOG"):
            data["access_log"] = clean("ACCESS_LOG")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict, base: Optional["ProxySettings"] = None) -> "ProxySettings":
        base = base or cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {f.name: getattr(base, f.name) for f in fields(cls)}
        values.update(data)

        concurrency = int(values["concurrency"])
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        access_log = values["access_log"]
        if isinstance(access_log, str):
            access_log = access_log.strip().lower() in {"1", "true", "yes", "on"}

        return cls(
            host=str(values["host"]),
            concurrency=concurrency,
            npm_executable=str(values["npm_executable"]),
            log_level=str(values["log_level"]).upper(),
            access_log=bool(access_log),
        )

    @classmethod
    def from_yaml(cls, path: Path, base: Optional["ProxySettings"] = None) -> "ProxySettings":
        """Load settings from a YAML file, layered over *base*."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        return cls.from_dict(data, base=base)


def load_settings(path: str | Path | None = None, env: Optional[dict[str, str]] = None) -> ProxySettings:
    """Environment first, then the optional YAML file on top."""
    settings = ProxySettings.from_env(env)
    if path is None:
        return settings
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    return ProxySettings.from_yaml(path, base=settings)
