from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from devbuild.core.config import Config


def make_tarball(files: dict[str, bytes], *, prefix: str = "package") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(f"{prefix}/{name}" if prefix else name)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class FakeRegistry:
    """In-memory npm registry and GitHub releases API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.npm: dict[str, dict[str, object]] = {}
        self.tarballs: dict[str, bytes] = {}
        self.releases: dict[str, dict[str, object]] = {}
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []
        self.fail = False

    def add_npm_package(self, name: str, versions: dict[str, dict[str, bytes]], dist_tags: dict[str, str]) -> None:
        document: dict[str, object] = {"name": name, "dist-tags": dist_tags, "versions": {}}
        for version, files in versions.items():
            url = f"https://registry.npmjs.org/{name}/-/{name.split('/')[-1]}-{version}.tgz"
            document["versions"][version] = {"dist": {"tarball": url}}  # type: ignore[index]
            self.tarballs[url] = make_tarball(files)
        self.npm[name] = document

    def add_release(self, repo: str, tag: str, assets: dict[str, bytes]) -> None:
        entries = []
        for name, content in assets.items():
            url = f"https://github.com/{repo}/releases/download/{tag}/{name}"
            self.files[url] = content
            entries.append({"name": name, "browser_download_url": url})
        self.releases[repo] = {"tag_name": tag, "assets": entries}

    def downloads(self) -> list[str]:
        return [url for url in self.requests if url in self.tarballs or url in self.files]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.fail:
            raise httpx.ConnectError("network unreachable", request=request)
        if url in self.tarballs:
            return httpx.Response(200, content=self.tarballs[url])
        if url in self.files:
            return httpx.Response(200, content=self.files[url])
        if url.startswith("https://api.github.com/repos/") and url.endswith("/releases/latest"):
            repo = url[len("https://api.github.com/repos/") : -len("/releases/latest")]
            if repo in self.releases:
                return httpx.Response(200, json=self.releases[repo])
        if url.startswith("https://registry.npmjs.org/"):
            name = url[len("https://registry.npmjs.org/") :].replace("%40", "@").replace("%2F", "/")
            if name in self.npm:
                return httpx.Response(200, json=self.npm[name])
        return httpx.Response(404, json={"error": "not found"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def project_config(tmp_path: Path) -> Callable[..., Config]:
    def _make(data: dict[str, object] | None = None) -> Config:
        return Config.from_mapping(data or {}, project_dir=tmp_path)

    return _make


def write_manifest(directory: Path, version: str, *, package_json: bool = True) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "version.json").write_text(json.dumps({"version": version, "timestamp": 0}), encoding="utf-8")
    if package_json:
        (directory / "package.json").write_text(json.dumps({"version": version}), encoding="utf-8")
