from __future__ import annotations

from pathlib import Path

from devbuild.api import Client, ProviderInfo
from devbuild.core.config import Config
from devbuild.core.model import SUCCESS
from devbuild.providers.factory import build_binary_registry

from conftest import write_manifest


def _client(tmp_path: Path, data: dict, fake_registry) -> Client:
    config = Config.from_mapping(data, project_dir=tmp_path)
    return Client(config=config, binary_registry=build_binary_registry(config, client=fake_registry.client()))


def test_public_client_lists_default_providers(tmp_path: Path, fake_registry) -> None:
    client = _client(tmp_path, {}, fake_registry)

    providers = client.providers()

    assert ProviderInfo(name="binaries", service_order=0, dependencies=()) in providers
    assert ProviderInfo(name="tailwind", service_order=20, dependencies=("binaries",)) in providers
    assert any(p.name == "hot_reload" for p in providers)


def test_public_client_install_uses_cache(tmp_path: Path, fake_registry) -> None:
    write_manifest(tmp_path / "var" / "valksor-ui", "1.0.0")
    client = _client(
        tmp_path,
        {"services": {"binaries": {"options": {"required": ["generic_npm"], "generic_npm_packages": "@valksor/ui"}}}},
        fake_registry,
    )

    report = client.install()

    assert report.exit_code == SUCCESS
    assert report.installed == {"@valksor/ui": "1.0.0"}
    assert (tmp_path / "public" / "vendor" / "valksor-ui" / "package.json").exists()


def test_public_client_build_without_sources(tmp_path: Path, fake_registry) -> None:
    (tmp_path / "var" / "tailwindcss").mkdir(parents=True)
    (tmp_path / "var" / "tailwindcss" / "tailwindcss").write_text("", encoding="utf-8")
    client = _client(tmp_path, {"services": {"tailwind": {"flags": {"dev": True}}}}, fake_registry)

    assert client.build() == SUCCESS
    assert fake_registry.requests == []


def test_public_client_watch_with_nothing_to_run(tmp_path: Path, fake_registry) -> None:
    messages: list[str] = []
    config = Config.from_mapping({}, project_dir=tmp_path)
    client = Client(config=config, logger=messages.append)

    assert client.watch() == SUCCESS
    assert "No services configured" in messages
    client.stop()
