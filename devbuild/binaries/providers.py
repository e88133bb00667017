"""Binary providers that turn a logical binary name into a configured asset manager."""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import httpx

from devbuild.binaries.asset_manager import MANIFEST_NAME, BinaryAssetManager, detect_platform
from devbuild.core.config import Config
from devbuild.core.lifecycle import LoggerSink, emit
from devbuild.core.model import AssetSpec, BinarySpec, PackageSpec

LOGGER = logging.getLogger(__name__)

GENERIC_NPM_PACKAGES_KEY = "services.binaries.options.generic_npm_packages"


class BinaryProvider(Protocol):
    name: str

    def create_manager(self, var_dir: Path, requested_name: str | None = None) -> BinaryAssetManager | None:
        """Return an asset manager for the binary, or None when nothing is configured."""


def parse_package_spec(spec: str) -> PackageSpec:
    """Split ``name`` or ``name@tag`` into a package and dist tag.

    The tag separator is the last ``@`` and, for scoped names, it must sit
    after the scope's ``/``. Anything else is a bare package name with the
    ``latest`` tag.
    """
    spec = spec.strip()
    last_at = spec.rfind("@")
    if last_at <= 0:
        return PackageSpec(package=spec, tag="latest")

    first_at = spec.find("@")
    slash = spec.find("/", first_at + 1)
    if spec.startswith("@") and (slash == -1 or last_at < slash):
        return PackageSpec(package=spec, tag="latest")

    return PackageSpec(package=spec[:last_at], tag=spec[last_at + 1 :] or "latest")


def package_dir(package: str) -> str:
    """``@valksor/valksor`` -> ``valksor-valksor``."""
    return package.replace("@", "").replace("/", "-")


def _split_package_list(value: str | Iterable[str] | None) -> list[str]:
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else list(value)
    return [item.strip() for item in items if item and item.strip()]


class TailwindBinary:
    name = "tailwindcss"

    def __init__(self, *, client: httpx.Client | None = None, platform_name: str | None = None) -> None:
        self._client = client
        self._platform = platform_name

    def executable_name(self) -> str:
        return "tailwindcss.exe" if self._resolved_platform().startswith("windows") else "tailwindcss"

    def executable_path(self, var_dir: Path) -> Path:
        return var_dir / "tailwindcss" / self.executable_name()

    def create_manager(self, var_dir: Path, requested_name: str | None = None) -> BinaryAssetManager:
        platform_name = self._resolved_platform()
        suffix = ".exe" if platform_name.startswith("windows") else ""
        spec = BinarySpec(
            name="Tailwind CSS",
            source="github",
            repo="tailwindlabs/tailwindcss",
            assets=(
                AssetSpec(
                    pattern=f"tailwindcss-{platform_name}{suffix}",
                    target=self.executable_name(),
                    executable=True,
                ),
            ),
            target_dir=var_dir / "tailwindcss",
        )
        return BinaryAssetManager(spec, client=self._client, platform_name=platform_name)

    def _resolved_platform(self) -> str:
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform


class GenericNpmBinaryProvider:
    """Fetch a comma-separated list of npm packages, e.g. ``@acme/ui,@acme/icons@next``."""

    name = "generic_npm"

    def __init__(
        self,
        config: Config,
        package_list: str | Iterable[str] | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self._client = client
        if package_list is None:
            package_list = config.get(GENERIC_NPM_PACKAGES_KEY)
        self._packages = tuple(parse_package_spec(item) for item in _split_package_list(package_list))

    def packages(self) -> list[str]:
        return [pkg.package for pkg in self._packages]

    def package_specs(self) -> tuple[PackageSpec, ...]:
        return self._packages

    def package_count(self) -> int:
        return len(self._packages)

    def has_package(self, package: str) -> bool:
        return any(pkg.package == package for pkg in self._packages)

    def target_directory(self, package: str) -> Path:
        return self.config.var_dir / package_dir(package)

    def public_directory(self, package: str) -> Path:
        return self.config.public_vendor_dir / package_dir(package)

    def create_manager(self, var_dir: Path, requested_name: str | None = None) -> BinaryAssetManager | None:
        if not self._packages:
            return None

        selected = self._packages[0]
        if requested_name:
            requested = parse_package_spec(requested_name)
            for pkg in self._packages:
                if pkg.package == requested.package:
                    selected = pkg
                    if requested.tag != "latest":
                        selected = PackageSpec(package=pkg.package, tag=requested.tag)
                    break

        return self._manager_for(selected, var_dir / package_dir(selected.package))

    def ensure_all(self, logger: LoggerSink | None = None) -> list[str]:
        versions: list[str] = []
        for pkg in self._packages:
            target_dir = self.target_directory(pkg.package)
            manager = self._manager_for(pkg, target_dir)
            cached = manager.read_manifest()
            if cached is not None and manager.is_up_to_date():
                emit(logger, f"{pkg.package} assets already current ({cached.version})")
                versions.append(cached.version)
                continue
            versions.append(manager.ensure_latest(logger))
        return versions

    def sync_to_public_vendor(self, logger: LoggerSink | None = None) -> list[str]:
        synced: list[str] = []
        for pkg in self._packages:
            source = self.target_directory(pkg.package)
            target = self.public_directory(pkg.package)
            if not source.is_dir():
                emit(
                    logger,
                    f"Warning: Source directory not found for {pkg.package}: {source}",
                    level=logging.WARNING,
                )
                continue
            LOGGER.debug("Copying %s to %s", source, target)
            shutil.copytree(source, target, dirs_exist_ok=True, ignore=shutil.ignore_patterns(MANIFEST_NAME))
            synced.append(pkg.package)
            emit(logger, f"Synced {pkg.package} to {self.config.public_vendor_dir}")
        return synced

    def installed_version(self, package: str) -> str | None:
        path = self.target_directory(package) / MANIFEST_NAME
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return str(data.get("version")) if isinstance(data, dict) and data.get("version") else None

    def _manager_for(self, pkg: PackageSpec, target_dir: Path) -> BinaryAssetManager:
        spec = BinarySpec(
            name=pkg.package,
            source="npm",
            npm_package=pkg.package,
            npm_dist_tag=pkg.tag,
            assets=(AssetSpec(pattern="package", target=".", executable=False, extract_path="package"),),
            target_dir=target_dir,
            expected_files=("package.json",),
        )
        return BinaryAssetManager(spec, client=self._client)
