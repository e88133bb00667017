"""Download, cache and version-track external binaries and npm asset bundles."""

from __future__ import annotations

import functools
import io
import json
import logging
import platform
import shutil
import stat
import tarfile
import time
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any

import httpx

from devbuild.core.errors import AcquisitionError
from devbuild.core.lifecycle import LoggerSink, emit
from devbuild.core.model import AssetSpec, BinarySpec, VersionManifest

GITHUB_API_URL = "https://api.github.com"
NPM_REGISTRY_URL = "https://registry.npmjs.org"
MANIFEST_NAME = "version.json"
_TIMEOUT_S = 30.0
LOGGER = logging.getLogger(__name__)

_OS_NAMES = {"linux": "linux", "darwin": "macos", "windows": "windows"}
_ARCH_NAMES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8l": "arm64",
}


@functools.cache
def detect_platform() -> str:
    """Return ``<os>-<arch>`` for the host, e.g. ``linux-x64`` or ``macos-arm64``."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    os_name = _OS_NAMES.get(system)
    arch = _ARCH_NAMES.get(machine)
    if os_name is None or arch is None:
        raise AcquisitionError(f"Unsupported platform: {system}/{machine}")
    return f"{os_name}-{arch}"


def _github_headers() -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "devbuild-binary-installer/1.0",
    }


class BinaryAssetManager:
    """Keep one binary or asset bundle current inside ``spec.target_dir``.

    The cache counts as current only when ``version.json`` parses, holds a
    non-empty version and every expected asset file exists. The manifest is
    written after extraction, so an interrupted download never looks
    complete.
    """

    def __init__(
        self,
        spec: BinarySpec,
        *,
        client: httpx.Client | None = None,
        platform_name: str | None = None,
    ) -> None:
        if spec.source not in {"github", "npm"}:
            raise AcquisitionError(f"Unsupported source '{spec.source}' for {spec.name}")
        self.spec = spec
        self._client = client
        self._platform = platform_name
        self._resolved: dict[str, Any] | None = None

    @property
    def target_dir(self) -> Path:
        return self.spec.target_dir

    @property
    def manifest_path(self) -> Path:
        return self.spec.target_dir / MANIFEST_NAME

    @property
    def platform(self) -> str:
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform

    def read_manifest(self) -> VersionManifest | None:
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        manifest = VersionManifest.from_dict(data)
        return manifest if manifest.version else None

    def expected_files(self) -> list[Path]:
        names = list(self.spec.expected_files)
        for asset in self.spec.assets:
            if asset.target not in {"", "."}:
                names.append(asset.target)
        return [self.spec.target_dir / name for name in names]

    def is_up_to_date(self, version: str | None = None) -> bool:
        manifest = self.read_manifest()
        if manifest is None:
            return False
        if version is not None and manifest.version != version:
            return False
        return all(path.exists() for path in self.expected_files())

    def ensure_latest(self, logger: LoggerSink | None = None) -> str:
        emit(logger, f"Checking latest {self.spec.name} version...")
        try:
            version = self.resolve_latest_version()
        except (AcquisitionError, httpx.HTTPError) as exc:
            cached = self.read_manifest()
            if cached is not None and self.is_up_to_date():
                emit(
                    logger,
                    f"Warning: could not resolve latest {self.spec.name} ({exc}); using cached {cached.version}",
                    level=logging.WARNING,
                )
                return cached.version
            if isinstance(exc, AcquisitionError):
                raise
            raise AcquisitionError(f"Could not resolve latest {self.spec.name} version: {exc}") from exc

        if self.is_up_to_date(version):
            emit(logger, f"{self.spec.name} already current ({version})")
            return version

        emit(logger, f"Downloading {self.spec.name} {version} for {self._platform_label()}...")
        try:
            # the manifest is only rewritten once the new tree is complete
            self.manifest_path.unlink(missing_ok=True)
            self._install(version, logger)
        except httpx.HTTPError as exc:
            raise AcquisitionError(f"Download of {self.spec.name} {version} failed: {exc}") from exc
        except (OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
            raise AcquisitionError(f"Extracting {self.spec.name} {version} failed: {exc}") from exc

        self._write_manifest(version)
        emit(logger, f"{self.spec.name} {version} installed to {self.spec.target_dir}")
        return version

    def resolve_latest_version(self) -> str:
        if self.spec.source == "github":
            self._resolved = self._github_release()
            return str(self._resolved["tag_name"])
        self._resolved = self._npm_document()
        return self._npm_version(self._resolved)

    def _platform_label(self) -> str:
        if self.spec.source == "npm":
            return "all platforms"
        return self.platform

    def _install(self, version: str, logger: LoggerSink | None) -> None:
        self.spec.target_dir.mkdir(parents=True, exist_ok=True)
        if self.spec.source == "github":
            release = self._resolved or self._github_release()
            assets = _release_assets(release)
            for asset in self.spec.assets:
                pattern = asset.pattern.replace("{platform}", self.platform)
                url = assets.get(pattern)
                if url is None:
                    raise AcquisitionError(
                        f"Release {version} of {self.spec.repo} has no asset named '{pattern}'"
                    )
                emit(logger, f"Fetching {pattern}")
                self._place(asset, pattern, self._download(url), logger)
        else:
            document = self._resolved or self._npm_document()
            try:
                tarball_url = document["versions"][version]["dist"]["tarball"]
            except (KeyError, TypeError) as exc:
                raise AcquisitionError(f"npm package {self.spec.npm_package}@{version} has no tarball") from exc
            emit(logger, f"Fetching {tarball_url}")
            payload = self._download(tarball_url)
            for asset in self.spec.assets:
                self._place(asset, "package.tgz", payload, logger)

    def _place(self, asset: AssetSpec, name: str, payload: bytes, logger: LoggerSink | None) -> None:
        target = self.spec.target_dir / asset.target
        if name.endswith((".tgz", ".tar.gz")):
            emit(logger, f"Extracting {name}")
            _extract_tar(payload, target, asset.extract_path)
        elif name.endswith(".zip"):
            emit(logger, f"Extracting {name}")
            _extract_zip(payload, target, asset.extract_path)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(payload)
            tmp.replace(target)
        if asset.executable:
            mode = target.stat().st_mode
            target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _write_manifest(self, version: str) -> None:
        manifest = VersionManifest(version=version, timestamp=int(time.time()))
        self.manifest_path.write_text(json.dumps(manifest.to_dict(), indent=2), encoding="utf-8")

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=_TIMEOUT_S, follow_redirects=True)
        return self._client

    def _get_json(self, url: str, headers: dict[str, str] | None = None) -> Any:
        LOGGER.debug("GET %s", url)
        resp = self._http().get(url, headers=headers)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as exc:
            raise AcquisitionError(f"{url} did not return JSON: {exc}") from exc

    def _download(self, url: str) -> bytes:
        resp = self._http().get(url)
        resp.raise_for_status()
        return resp.content

    def _github_release(self) -> dict[str, Any]:
        if not self.spec.repo:
            raise AcquisitionError(f"{self.spec.name} has no GitHub repository configured")
        release = self._get_json(f"{GITHUB_API_URL}/repos/{self.spec.repo}/releases/latest", _github_headers())
        if not isinstance(release, dict) or not release.get("tag_name"):
            raise AcquisitionError(f"GitHub returned no release tag for {self.spec.repo}")
        return release

    def _npm_document(self) -> dict[str, Any]:
        if not self.spec.npm_package:
            raise AcquisitionError(f"{self.spec.name} has no npm package configured")
        document = self._get_json(f"{NPM_REGISTRY_URL}/{self.spec.npm_package}")
        if not isinstance(document, dict):
            raise AcquisitionError(f"npm registry returned an invalid document for {self.spec.npm_package}")
        return document

    def _npm_version(self, document: dict[str, Any]) -> str:
        tags = document.get("dist-tags") or {}
        if not isinstance(tags, dict):
            raise AcquisitionError(f"npm package {self.spec.npm_package} has malformed dist-tags")
        version = tags.get(self.spec.npm_dist_tag)
        if not version:
            raise AcquisitionError(
                f"npm package {self.spec.npm_package} has no dist-tag '{self.spec.npm_dist_tag}'"
            )
        return str(version)


def _release_assets(release: dict[str, Any]) -> dict[str, str]:
    assets = release.get("assets") or []
    if not isinstance(assets, list):
        raise AcquisitionError("GitHub release has a malformed asset list")
    found: dict[str, str] = {}
    for asset in assets:
        if not isinstance(asset, dict) or not asset.get("name") or not asset.get("browser_download_url"):
            raise AcquisitionError(f"GitHub release lists a malformed asset: {asset!r}")
        found[str(asset["name"])] = str(asset["browser_download_url"])
    return found

def _member_target(name: str, extract_path: str | None) -> PurePosixPath | None:
    member = PurePosixPath(name)
    if extract_path:
        prefix = PurePosixPath(extract_path)
        try:
            member = member.relative_to(prefix)
        except ValueError:
            return None
    if member.is_absolute() or ".." in member.parts:
        raise AcquisitionError(f"Refusing to extract unsafe archive member '{name}'")
    if not member.parts:
        return None
    return member


def _extract_tar(payload: bytes, target: Path, extract_path: str | None) -> None:
    target.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(payload), mode="r:*") as archive:
        for member in archive.getmembers():
            relative = _member_target(member.name, extract_path)
            if relative is None:
                continue
            destination = target.joinpath(*relative.parts)
            if member.isdir():
                destination.mkdir(parents=True, exist_ok=True)
                continue
            if not member.isfile():
                continue
            source = archive.extractfile(member)
            if source is None:
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            with source, destination.open("wb") as handle:
                shutil.copyfileobj(source, handle)
            if member.mode & stat.S_IXUSR:
                destination.chmod(destination.stat().st_mode | stat.S_IXUSR)


def _extract_zip(payload: bytes, target: Path, extract_path: str | None) -> None:
    target.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        for info in archive.infolist():
            relative = _member_target(info.filename, extract_path)
            if relative is None:
                continue
            destination = target.joinpath(*relative.parts)
            if info.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as source, destination.open("wb") as handle:
                shutil.copyfileobj(source, handle)
