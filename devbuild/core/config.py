"""Configuration loading and validation for devbuild.yaml project files."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from devbuild.core.errors import ConfigurationError
from devbuild.core.model import ServiceConfig

DEFAULT_CONFIG_NAME = "devbuild.yaml"
LOGGER = logging.getLogger(__name__)

_MISSING = object()


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigurationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


# only literal true/false become booleans, yes/no/on/off stay strings
UniqueKeyLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)
UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


class Config:
    """Read-only key/value view over a loaded project configuration.

    Keys are dotted paths into the nested document, e.g.
    ``services.binaries.options.required``. Missing keys return the default.
    """

    def __init__(self, data: Mapping[str, Any], *, project_dir: Path, source: Path | None = None) -> None:
        self._data = dict(data)
        self.project_dir = project_dir
        self.source = source

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, project_dir: Path | str) -> Config:
        project = Path(project_dir)
        root = data.get("project_dir")
        if root:
            project = (project / str(root)).resolve()
        return cls(data, project_dir=project)

    def get(self, key: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, Mapping):
                return default
            node = node.get(part, _MISSING)
            if node is _MISSING:
                return default
        return default if node is None else node

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    @property
    def environment(self) -> str:
        return str(self.get("environment", "dev"))

    @property
    def var_dir(self) -> Path:
        return self.project_dir / str(self.get("var_dir", "var"))

    @property
    def public_vendor_dir(self) -> Path:
        return self.project_dir / str(self.get("public_vendor_dir", "public/vendor"))

    @property
    def apps_dir(self) -> Path:
        return self.project_dir / str(self.get("apps_dir", "apps"))

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)


def _load_schema_validator() -> Any:
    schema_text = resources.files("devbuild.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at root")
    return loaded


def validate_config(doc: Mapping[str, Any], source: Path | str = "<memory>") -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigurationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def find_config(start: Path | None = None) -> Path:
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    raise ConfigurationError(f"No {DEFAULT_CONFIG_NAME} found in {current} or any parent directory")


def load_config(path: Path | str | None = None) -> Config:
    config_path = Path(path) if path is not None else find_config()
    doc = _read_yaml(config_path)
    validate_config(doc, config_path)
    config = Config.from_mapping(doc, project_dir=config_path.resolve().parent)
    config.source = config_path
    LOGGER.debug("Loaded configuration from %s (project dir %s)", config_path, config.project_dir)
    return config


def service_entries(config: Config) -> list[ServiceConfig]:
    services = config.get("services", {})
    if not isinstance(services, Mapping):
        raise ConfigurationError("'services' must be a mapping of service id to service definition")

    entries: list[ServiceConfig] = []
    for service_id, spec in services.items():
        spec = spec or {}
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"Service '{service_id}' must be a mapping")
        entries.append(
            ServiceConfig(
                id=str(service_id),
                provider=str(spec.get("provider") or service_id),
                enabled=bool(spec.get("enabled", True)),
                options=dict(spec.get("options") or {}),
                flags={str(k): bool(v) for k, v in (spec.get("flags") or {}).items()},
            )
        )
    return entries
