from __future__ import annotations

import io
import json
import stat
import sys
import tarfile
from pathlib import Path
from typing import Callable, Optional
from types import SimpleNamespace

import pytest

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))


def build_tarball(
    path: Path,
    manifest: Optional[dict],
    files: Optional[dict[str, str | bytes]] = None,
    prefix: str = "package",
) -> Path:
    """Write a gzip tarball laid out like ``npm pack`` output."""
    contents: dict[str, str | bytes] = {}
    if manifest is not None:
        contents["package.json"] = json.dumps(manifest)
    contents.update(files or {})

    with tarfile.open(path, "w:gz") as tar:
        for name, content in contents.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{prefix}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


def build_package_dir(path: Path, manifest: dict, files: Optional[dict[str, str]] = None) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.json").write_text(json.dumps(manifest))
    for name, content in (files or {}).items():
        target = path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return path


def read_tar_manifest(data: bytes) -> dict:
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        f = tar.extractfile("package/package.json")
        assert f is not None
        return json.loads(f.read())


@pytest.fixture
def make_tarball(tmp_path) -> Callable[..., Path]:
    def factory(name: str = "pkg", version: str = "1.0.0", **kwargs) -> Path:
        manifest = kwargs.pop("manifest", {"name": name, "version": version})
        filename = kwargs.pop("filename", f"{name.replace('/', '-').lstrip('@')}-{version}.tgz")
        return build_tarball(tmp_path / filename, manifest, **kwargs)

    return factory


@pytest.fixture
def make_package_dir(tmp_path) -> Callable[..., Path]:
    def factory(name: str = "pkg", version: str = "2.0.0", dirname: str = "pkg-src", **kwargs) -> Path:
        manifest = kwargs.pop("manifest", {"name": name, "version": version})
        return build_package_dir(tmp_path / dirname, manifest, **kwargs)

    return factory


@pytest.fixture
def fake_provider() -> SimpleNamespace:
    """Stands in for the running service when building tarball URLs."""
    return SimpleNamespace(url="http://test/")


_FAKE_NPM = '''#!{python}
import os
import sys
import urllib.request

state = os.environ["FAKE_NPM_STATE"]
args = sys.argv[1:]
with open(state + ".log", "a") as log:
    log.write(" ".join(args) + "\\n")

if args[:2] == ["config", "get"]:
    if os.path.exists(state):
        print(open(state).read().strip())
    else:
        print("https://registry.npmjs.org/")
elif args[:2] == ["config", "set"]:
    with open(state, "w") as f:
        f.write(args[3])
elif args[:2] == ["config", "delete"]:
    if os.path.exists(state):
        os.remove(state)
else:
    fetch = os.environ.get("FAKE_NPM_FETCH")
    if fetch and os.path.exists(state):
        registry = open(state).read().strip()
        opener = urllib.request.build_opener(urllib.request.ProxyHandler({{}}))
        with opener.open(registry + fetch) as resp:
            with open(state + ".fetched", "wb") as out:
                out.write(resp.read())
    sys.exit(int(os.environ.get("FAKE_NPM_EXIT", "0")))
'''


@pytest.fixture
def fake_npm(tmp_path, monkeypatch) -> SimpleNamespace:
    """An ``npm`` stand-in that records its calls and keeps registry config in a file."""
    script = tmp_path / "fake-npm"
    script.write_text(_FAKE_NPM.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    state = tmp_path / "npm-registry"
    monkeypatch.setenv("FAKE_NPM_STATE", str(state))
    monkeypatch.delenv("FAKE_NPM_EXIT", raising=False)
    monkeypatch.delenv("FAKE_NPM_FETCH", raising=False)

    def calls() -> list[str]:
        log = Path(str(state) + ".log")
        return log.read_text().splitlines() if log.exists() else []

    return SimpleNamespace(
        executable=str(script),
        state=state,
        fetched=Path(str(state) + ".fetched"),
        calls=calls,
    )
