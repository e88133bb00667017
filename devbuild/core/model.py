"""Core data models shared by registry, services, binaries, and CLI."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

SUCCESS = 0
FAILURE = 1


@dataclass(frozen=True)
class ServiceConfig:
    id: str
    provider: str
    enabled: bool = True
    options: Mapping[str, Any] = field(default_factory=dict)
    flags: Mapping[str, bool] = field(default_factory=dict)

    @property
    def is_dev(self) -> bool:
        return bool(self.flags.get("dev", False))

    @property
    def is_init(self) -> bool:
        return bool(self.flags.get("init", False))


@dataclass(frozen=True)
class PackageSpec:
    package: str
    tag: str = "latest"


@dataclass(frozen=True)
class VersionManifest:
    version: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VersionManifest:
        return cls(version=str(data.get("version") or ""), timestamp=int(data.get("timestamp") or 0))


@dataclass(frozen=True)
class AssetSpec:
    pattern: str
    target: str
    executable: bool = False
    extract_path: str | None = None


@dataclass(frozen=True)
class BinarySpec:
    name: str
    source: str
    target_dir: Path
    assets: tuple[AssetSpec, ...]
    repo: str | None = None
    npm_package: str | None = None
    npm_dist_tag: str = "latest"
    # files that must exist next to version.json for a cache to count as complete
    expected_files: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileTransformationRule:
    pattern: str
    output_pattern: str
    debounce_delay: float = 0.5
    reload: bool = True
    command: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChangeEvent:
    path: Path
    detected_at: float
