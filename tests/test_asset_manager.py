from __future__ import annotations

import io
import json
import os
import zipfile
from pathlib import Path

import httpx
import pytest

from devbuild.binaries.asset_manager import BinaryAssetManager, _extract_tar
from devbuild.core.errors import AcquisitionError
from devbuild.core.model import AssetSpec, BinarySpec

from conftest import make_tarball, write_manifest


def _npm_spec(target_dir: Path, package: str = "@valksor/valksor", tag: str = "latest") -> BinarySpec:
    return BinarySpec(
        name=package,
        source="npm",
        npm_package=package,
        npm_dist_tag=tag,
        assets=(AssetSpec(pattern="package", target=".", extract_path="package"),),
        target_dir=target_dir,
        expected_files=("package.json",),
    )


def _github_spec(target_dir: Path, pattern: str = "tool-{platform}") -> BinarySpec:
    return BinarySpec(
        name="tool",
        source="github",
        repo="acme/tool",
        assets=(AssetSpec(pattern=pattern, target="tool", executable=True),),
        target_dir=target_dir,
    )


def test_npm_download_extracts_package_and_writes_manifest(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_npm_package(
        "@valksor/valksor",
        {"1.2.0": {"package.json": b"{}", "dist/valksor.js": b"export {}"}},
        {"latest": "1.2.0"},
    )
    messages: list[str] = []
    manager = BinaryAssetManager(_npm_spec(tmp_path / "valksor-valksor"), client=fake_registry.client())

    version = manager.ensure_latest(messages.append)

    assert version == "1.2.0"
    target = tmp_path / "valksor-valksor"
    assert (target / "dist" / "valksor.js").read_bytes() == b"export {}"
    assert not (target / "package").exists()
    manifest = json.loads((target / "version.json").read_text())
    assert manifest["version"] == "1.2.0"
    assert isinstance(manifest["timestamp"], int)
    assert any("all platforms" in m for m in messages)


def test_second_call_downloads_nothing(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_npm_package("@valksor/ui", {"3.0.0": {"package.json": b"{}"}}, {"latest": "3.0.0"})
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=fake_registry.client())

    manager.ensure_latest()
    downloads_after_first = len(fake_registry.downloads())
    assert manager.ensure_latest() == "3.0.0"

    assert downloads_after_first == 1
    assert len(fake_registry.downloads()) == 1


def test_dist_tag_selects_version(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_npm_package(
        "@valksor/ui",
        {"3.0.0": {"package.json": b"{}"}, "4.0.0-rc.1": {"package.json": b'{"next": true}'}},
        {"latest": "3.0.0", "next": "4.0.0-rc.1"},
    )
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui", "next"), client=fake_registry.client())

    assert manager.ensure_latest() == "4.0.0-rc.1"
    assert (tmp_path / "ui" / "package.json").read_bytes() == b'{"next": true}'


def test_unknown_dist_tag_raises(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_npm_package("@valksor/ui", {"3.0.0": {"package.json": b"{}"}}, {"latest": "3.0.0"})
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui", "beta"), client=fake_registry.client())

    with pytest.raises(AcquisitionError, match="dist-tag 'beta'"):
        manager.ensure_latest()


def test_github_binary_is_executable(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_release("acme/tool", "v1.4.0", {"tool-linux-x64": b"#!/bin/sh\necho tool\n"})
    manager = BinaryAssetManager(
        _github_spec(tmp_path / "tool"), client=fake_registry.client(), platform_name="linux-x64"
    )

    assert manager.ensure_latest() == "v1.4.0"
    binary = tmp_path / "tool" / "tool"
    assert binary.read_bytes() == b"#!/bin/sh\necho tool\n"
    assert os.access(binary, os.X_OK)
    assert manager.is_up_to_date("v1.4.0")
    assert not manager.is_up_to_date("v1.5.0")


def test_github_missing_asset_raises(tmp_path: Path, fake_registry) -> None:
    fake_registry.add_release("acme/tool", "v1.4.0", {"tool-linux-x64": b"bin"})
    manager = BinaryAssetManager(
        _github_spec(tmp_path / "tool"), client=fake_registry.client(), platform_name="macos-arm64"
    )

    with pytest.raises(AcquisitionError, match="tool-macos-arm64"):
        manager.ensure_latest()
    assert manager.read_manifest() is None


def test_network_failure_falls_back_to_cache(tmp_path: Path, fake_registry) -> None:
    write_manifest(tmp_path / "ui", "2.0.0")
    fake_registry.fail = True
    messages: list[str] = []
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=fake_registry.client())

    assert manager.ensure_latest(messages.append) == "2.0.0"
    assert any(m.startswith("Warning: could not resolve latest") for m in messages)


def test_network_failure_without_cache_raises(tmp_path: Path, fake_registry) -> None:
    fake_registry.fail = True
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=fake_registry.client())

    with pytest.raises(AcquisitionError, match="Could not resolve latest"):
        manager.ensure_latest()


def test_not_found_package_raises(tmp_path: Path, fake_registry) -> None:
    manager = BinaryAssetManager(_npm_spec(tmp_path / "x", "@valksor/missing"), client=fake_registry.client())

    with pytest.raises(AcquisitionError):
        manager.ensure_latest()


def test_incomplete_cache_is_not_current(tmp_path: Path) -> None:
    write_manifest(tmp_path / "ui", "2.0.0", package_json=False)
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui"))

    assert manager.read_manifest() is not None
    assert not manager.is_up_to_date()


@pytest.mark.parametrize("content", ["not json", "[]", '{"version": ""}', '{"timestamp": 1}'])
def test_invalid_manifest_is_ignored(tmp_path: Path, content: str) -> None:
    target = tmp_path / "ui"
    target.mkdir()
    (target / "version.json").write_text(content, encoding="utf-8")
    (target / "package.json").write_text("{}", encoding="utf-8")
    manager = BinaryAssetManager(_npm_spec(target))

    assert manager.read_manifest() is None
    assert not manager.is_up_to_date()


def test_unsupported_source_rejected(tmp_path: Path) -> None:
    spec = BinarySpec(name="x", source="ftp", target_dir=tmp_path, assets=())

    with pytest.raises(AcquisitionError, match="Unsupported source"):
        BinaryAssetManager(spec)


def test_archive_with_parent_reference_rejected(tmp_path: Path) -> None:
    payload = make_tarball({"../escape.txt": b"x"}, prefix="")

    with pytest.raises(AcquisitionError, match="unsafe"):
        _extract_tar(payload, tmp_path / "out", None)
    assert not (tmp_path / "escape.txt").exists()


def test_zip_release_asset_extracted(tmp_path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("tool-1.0/bin/tool", "binary")
        archive.writestr("tool-1.0/README", "docs")
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"tag_name": "1.0", "assets": [
            {"name": "tool.zip", "browser_download_url": "https://example.test/tool.zip"}
        ]})
        if request.url.host == "api.github.com"
        else httpx.Response(200, content=buffer.getvalue())
    )
    spec = BinarySpec(
        name="tool",
        source="github",
        repo="acme/tool",
        assets=(AssetSpec(pattern="tool.zip", target="dist", extract_path="tool-1.0"),),
        target_dir=tmp_path / "tool",
        expected_files=("dist/bin/tool",),
    )
    manager = BinaryAssetManager(spec, client=httpx.Client(transport=transport), platform_name="linux-x64")

    assert manager.ensure_latest() == "1.0"
    assert (tmp_path / "tool" / "dist" / "bin" / "tool").read_text() == "binary"
    assert (tmp_path / "tool" / "dist" / "README").read_text() == "docs"


def _static_client(response: httpx.Response) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(lambda request: response))


def test_non_json_response_falls_back_to_cache(tmp_path: Path) -> None:
    write_manifest(tmp_path / "ui", "1.0.0")
    messages: list[str] = []
    client = _static_client(httpx.Response(200, text="<html>Please sign in</html>"))
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=client)

    assert manager.ensure_latest(messages.append) == "1.0.0"
    assert any(m.startswith("Warning: could not resolve latest") for m in messages)


def test_non_json_response_without_cache_raises(tmp_path: Path) -> None:
    client = _static_client(httpx.Response(200, text="<html>Please sign in</html>"))
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=client)

    with pytest.raises(AcquisitionError, match="did not return JSON"):
        manager.ensure_latest()


def test_malformed_dist_tags_raise(tmp_path: Path) -> None:
    client = _static_client(httpx.Response(200, json={"name": "@valksor/ui", "dist-tags": ["latest"]}))
    manager = BinaryAssetManager(_npm_spec(tmp_path / "ui", "@valksor/ui"), client=client)

    with pytest.raises(AcquisitionError, match="malformed dist-tags"):
        manager.ensure_latest()


def test_malformed_release_asset_raises(tmp_path: Path) -> None:
    client = _static_client(httpx.Response(200, json={"tag_name": "v1.0.0", "assets": [{"name": "tool-linux-x64"}]}))
    manager = BinaryAssetManager(_github_spec(tmp_path / "tool"), client=client, platform_name="linux-x64")

    with pytest.raises(AcquisitionError, match="malformed asset"):
        manager.ensure_latest()


def test_failed_upgrade_does_not_leave_a_current_cache(tmp_path: Path, fake_registry) -> None:
    target = tmp_path / "ui"
    write_manifest(target, "1.0.0")
    fake_registry.add_npm_package(
        "@valksor/ui",
        {"2.0.0": {"package.json": b'{"version": "2.0.0"}', "../evil": b"x"}},
        {"latest": "2.0.0"},
    )
    manager = BinaryAssetManager(_npm_spec(target, "@valksor/ui"), client=fake_registry.client())

    with pytest.raises(AcquisitionError):
        manager.ensure_latest()

    assert manager.read_manifest() is None
    assert not manager.is_up_to_date()
    assert not (tmp_path / "evil").exists()
