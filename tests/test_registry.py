"""Tests for backend dispatch and metadata synthesis."""

import asyncio
import shutil
from pathlib import Path

import pytest

from conftest import read_tar_manifest
from npm_install_proxy.backends import Backend, DirectoryBackend, TarballBackend
from npm_install_proxy.errors import PackageNotFound, StreamFailure, UnreadableSource
from npm_install_proxy.registry import Registry, version_from_filename
from npm_install_proxy.registry.models import CatalogEntry, SourceKind


class RecordingBackend(Backend):
    """Accepts paths whose name starts with *prefix*."""

    def __init__(self, prefix: str, calls: list):
        self.prefix = prefix
        self.calls = calls

    @property
    def kind(self) -> SourceKind:
        return SourceKind.DIRECTORY

    async def try_register(self, path: Path) -> list[CatalogEntry]:
        self.calls.append((self.prefix, path.name))
        if not path.name.startswith(self.prefix):
            return []
        return [
            CatalogEntry(
                name=f"{self.prefix}-pkg",
                version="1.0.0",
                source_kind=self.kind,
                source_location=path,
            )
        ]


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


@pytest.fixture
def registry(fake_provider) -> Registry:
    registry = Registry(service_provider=fake_provider)
    registry.add_backend(TarballBackend())
    registry.add_backend(DirectoryBackend())
    return registry


def test_version_from_filename():
    assert version_from_filename("pkg", "pkg-1.0.0.tgz") == "1.0.0"
    assert version_from_filename("@scope/lib", "lib-2.0.0-beta.1.tgz") == "2.0.0-beta.1"
    assert version_from_filename("pkg", "other-1.0.0.tgz") is None
    assert version_from_filename("pkg", "pkg-1.0.0.zip") is None
    assert version_from_filename("pkg", "pkg-.tgz") is None


@pytest.mark.asyncio
async def test_register_tarball_then_lookup(registry, make_tarball):
    path = make_tarball("pkg", "1.0.0")

    assert await registry.register(path) == 1

    doc = registry.lookup_package_metadata("pkg").to_wire()
    assert doc["name"] == "pkg"
    assert doc["dist-tags"]["latest"] == "1.0.0"
    assert list(doc["versions"]) == ["1.0.0"]
    dist = doc["versions"]["1.0.0"]["dist"]
    assert dist["tarball"] == "http://test/pkg/-/pkg-1.0.0.tgz"
    assert dist["shasum"] and dist["integrity"].startswith("sha512-")


@pytest.mark.asyncio
async def test_register_directory_then_lookup(registry, make_package_dir):
    path = make_package_dir("pkg", "2.0.0")

    assert await registry.register(str(path)) == 1

    doc = registry.lookup_package_metadata("pkg").to_wire()
    assert "2.0.0" in doc["versions"]
    assert "shasum" not in doc["versions"]["2.0.0"]["dist"]


@pytest.mark.asyncio
async def test_register_unsupported_path_returns_zero(registry, tmp_path):
    readme = tmp_path / "README.md"
    readme.write_text("# docs")

    assert await registry.register(readme) == 0
    assert await registry.register(tmp_path / "does-not-exist") == 0
    assert await registry.register("--save-dev") == 0
    assert len(registry.catalog) == 0


@pytest.mark.asyncio
async def test_register_unreadable_source_keeps_existing(registry, tmp_path, make_tarball):
    await registry.register(make_tarball("good", "1.0.0"))
    broken = tmp_path / "broken.tgz"
    broken.write_bytes(b"\x1f\x8bgarbage")

    with pytest.raises(UnreadableSource):
        await registry.register(broken)

    assert registry.catalog.get("good", "1.0.0") is not None


@pytest.mark.asyncio
async def test_first_accepting_backend_wins(tmp_path, fake_provider):
    calls = []
    registry = Registry(service_provider=fake_provider)
    registry.add_backend(RecordingBackend("a", calls))
    registry.add_backend(RecordingBackend("ab", calls))
    registry.add_backend(RecordingBackend("x", calls))

    assert await registry.register(tmp_path / "abc") == 1

    assert calls == [("a", "abc")]
    assert registry.catalog.names() == ["a-pkg"]
    assert len(registry.backends) == 3


@pytest.mark.asyncio
async def test_registry_without_backends_registers_nothing(tmp_path, make_tarball):
    registry = Registry()
    assert await registry.register(make_tarball()) == 0


@pytest.mark.asyncio
async def test_latest_is_most_recent_registration(registry, make_tarball, tmp_path):
    await registry.register(make_tarball("pkg", "2.0.0"))
    await registry.register(make_tarball("pkg", "1.0.0"))

    doc = registry.lookup_package_metadata("pkg").to_wire()
    assert doc["dist-tags"]["latest"] == "1.0.0"
    assert list(doc["versions"]) == ["2.0.0", "1.0.0"]


@pytest.mark.asyncio
async def test_duplicate_registration_replaces_entry(registry, make_tarball, make_package_dir):
    await registry.register(make_tarball("pkg", "1.0.0"))
    await registry.register(make_tarball("pkg", "1.1.0"))
    src = make_package_dir("pkg", "1.0.0")

    assert await registry.register(src) == 1

    entry = registry.get_entry("pkg", "1.0.0")
    assert entry.source_kind is SourceKind.DIRECTORY
    assert entry.source_location == src.resolve()
    assert registry.lookup_package_metadata("pkg").dist_tags["latest"] == "1.0.0"
    assert len(registry.catalog) == 2


@pytest.mark.asyncio
async def test_concurrent_registrations(registry, make_tarball):
    paths = [make_tarball("pkg", f"1.0.{i}") for i in range(10)]

    counts = await asyncio.gather(*(registry.register(p) for p in paths))

    assert counts == [1] * 10
    assert len(registry.lookup_package_metadata("pkg").versions) == 10


@pytest.mark.asyncio
async def test_version_document_carries_manifest_fields(registry, make_tarball):
    manifest = {
        "name": "pkg",
        "version": "1.0.0",
        "dependencies": {"dep": "^2.0.0"},
        "bin": {"pkg": "cli.js"},
        "_id": "ignored",
    }
    await registry.register(make_tarball(manifest=manifest))

    version = registry.lookup_package_metadata("pkg").to_wire()["versions"]["1.0.0"]
    assert version["_id"] == "pkg@1.0.0"
    assert version["dependencies"] == {"dep": "^2.0.0"}
    assert version["bin"] == {"pkg": "cli.js"}


@pytest.mark.asyncio
async def test_scoped_package_tarball_url(registry, make_tarball):
    await registry.register(make_tarball("@scope/lib", "1.2.3"))

    doc = registry.lookup_package_metadata("@scope/lib").to_wire()
    assert doc["versions"]["1.2.3"]["dist"]["tarball"] == "http://test/@scope/lib/-/lib-1.2.3.tgz"


def test_lookup_unknown_package(registry):
    with pytest.raises(PackageNotFound) as exc:
        registry.lookup_package_metadata("nope")
    assert exc.value.name == "nope"


def test_tarball_stream_unknown_raises_before_streaming(registry):
    with pytest.raises(PackageNotFound) as exc:
        registry.get_tarball_stream("nope", "1.0.0")
    assert exc.value.version == "1.0.0"


def test_tarball_url_requires_service_provider():
    registry = Registry()
    entry = CatalogEntry(
        name="pkg", version="1.0.0", source_kind=SourceKind.TARBALL, source_location=Path("/x.tgz")
    )
    with pytest.raises(RuntimeError):
        registry.tarball_url(entry)


@pytest.mark.asyncio
async def test_tarball_stream_is_original_bytes(registry, make_tarball):
    path = make_tarball("pkg", "1.0.0", files={"big.bin": b"\0" * 200_000})
    await registry.register(path)

    data = await _collect(registry.get_tarball_stream("pkg", "1.0.0"))

    assert data == path.read_bytes()


@pytest.mark.asyncio
async def test_directory_stream_round_trips_manifest(registry, make_package_dir):
    await registry.register(make_package_dir("pkg", "2.0.0", files={"index.js": "1"}))

    data = await _collect(registry.get_tarball_stream("pkg", "2.0.0"))

    manifest = read_tar_manifest(data)
    assert (manifest["name"], manifest["version"]) == ("pkg", "2.0.0")


@pytest.mark.asyncio
async def test_stream_failure_when_source_disappears(registry, make_tarball, make_package_dir):
    tarball = make_tarball("gone", "1.0.0")
    src = make_package_dir("vanished", "1.0.0", dirname="vanished")
    await registry.register(tarball)
    await registry.register(src)
    tarball.unlink()
    shutil.rmtree(src)

    with pytest.raises(StreamFailure) as exc:
        await _collect(registry.get_tarball_stream("gone", "1.0.0"))
    assert exc.value.name == "gone"

    with pytest.raises(StreamFailure):
        await _collect(registry.get_tarball_stream("vanished", "1.0.0"))
