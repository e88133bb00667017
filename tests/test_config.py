from __future__ import annotations

from pathlib import Path

import pytest

from devbuild.core.config import Config, find_config, load_config, service_entries
from devbuild.core.errors import ConfigurationError


def _write_config(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_load_config_and_dotted_lookup(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "devbuild.yaml",
        """
environment: dev
services:
  binaries:
    provider: binaries
    flags: {init: true}
    options:
      required: [tailwindcss]
      generic_npm_packages: "@valksor/valksor,@valksor/ui@next"
  tailwind:
    enabled: false
    provider: tailwind
    flags: {dev: true}
""",
    )

    config = load_config(config_path)

    assert config.project_dir == tmp_path.resolve()
    assert config.environment == "dev"
    assert config.get("services.binaries.options.required") == ["tailwindcss"]
    assert config.get("services.binaries.options.missing", []) == []
    assert config.get("services.tailwind.enabled") is False
    assert config.var_dir == tmp_path.resolve() / "var"
    assert config.public_vendor_dir == tmp_path.resolve() / "public" / "vendor"


def test_service_entries_in_file_order(tmp_path: Path) -> None:
    config = load_config(
        _write_config(
            tmp_path / "devbuild.yaml",
            """
services:
  hot_reload:
    flags: {dev: true}
    options: {watch_dirs: [src]}
  binaries:
    provider: binaries
    flags: {init: true}
  tailwind:
    enabled: false
""",
        )
    )

    entries = service_entries(config)

    assert [e.id for e in entries] == ["hot_reload", "binaries", "tailwind"]
    assert entries[0].provider == "hot_reload"
    assert entries[0].is_dev and not entries[0].is_init
    assert entries[0].options == {"watch_dirs": ["src"]}
    assert entries[1].is_init
    assert entries[2].enabled is False


def test_yes_no_are_not_booleans(tmp_path: Path) -> None:
    config = load_config(
        _write_config(
            tmp_path / "devbuild.yaml",
            """
services:
  hot_reload:
    options:
      watch_dirs: [no, "yes"]
""",
        )
    )

    assert config.get("services.hot_reload.options.watch_dirs") == ["no", "yes"]


def test_duplicate_keys_rejected(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "devbuild.yaml",
        """
services:
  tailwind:
    provider: tailwind
  tailwind:
    provider: other
""",
    )

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_schema_violation_names_location(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "devbuild.yaml",
        """
services:
  tailwind:
    enabled: "sometimes"
""",
    )

    with pytest.raises(ConfigurationError) as exc:
        load_config(path)

    assert "services.tailwind.enabled" in str(exc.value)


def test_unknown_root_key_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "devbuild.yaml", "servics: {}\n")

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_non_mapping_root_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "devbuild.yaml", "- a\n- b\n")

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "nope.yaml")


def test_find_config_searches_parents(tmp_path: Path) -> None:
    expected = _write_config(tmp_path / "devbuild.yaml", "services: {}\n")
    nested = tmp_path / "apps" / "site"
    nested.mkdir(parents=True)

    assert find_config(nested) == expected.resolve()


def test_empty_file_is_empty_config(tmp_path: Path) -> None:
    config = load_config(_write_config(tmp_path / "devbuild.yaml", ""))

    assert service_entries(config) == []
    assert config.get("services", {}) == {}


def test_from_mapping_honours_project_dir(tmp_path: Path) -> None:
    config = Config.from_mapping({"project_dir": "site", "apps_dir": "frontends"}, project_dir=tmp_path)

    assert config.project_dir == (tmp_path / "site").resolve()
    assert config.apps_dir == (tmp_path / "site").resolve() / "frontends"
    assert config.has("apps_dir")
    assert not config.has("services")
