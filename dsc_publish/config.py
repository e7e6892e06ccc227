"""
Configuration management for dsc-publish.

Settings live in an optional ``dsc-publish.yaml`` file. Values that are not
set there fall back to ``PublishConfig.DEFAULT_CONFIG``.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from dsc_publish.exceptions import InvalidConfigError

logger = logging.getLogger(__name__)

SCHEMA_FILE = Path(__file__).parent / "schema" / "config.schema.json"
CONFIG_FILE_NAME = "dsc-publish.yaml"

# Container the DSC VM extension reads from when none is named
DEFAULT_CONTAINER_NAME = "windows-powershell-dsc"


class PublishConfig:
    """Loads, validates and exposes dsc-publish settings."""

    DEFAULT_CONFIG = {
        "storage": {
            "container_name": DEFAULT_CONTAINER_NAME,
            "account_name": None,
            "endpoint_suffix": "core.windows.net",
            "use_default_credential": True,
        },
        "modules": {
            "resolver": "powershell",
            "powershell_executable": "pwsh",
            "module_paths": [],
            "timeout": 120,
        },
    }

    def __init__(self, config_file: Path | None = None, data: dict[str, Any] | None = None):
        self.config_file = Path(config_file) if config_file else None
        self._data: dict[str, Any] = _merge(copy.deepcopy(self.DEFAULT_CONFIG), data or {})

    @classmethod
    def load(cls, config_file: Path | None = None) -> "PublishConfig":
        """
        Load configuration from a YAML file.

        Args:
            config_file: Explicit config path. When omitted, ``dsc-publish.yaml``
                in the current directory is used if it exists.

        Returns:
            PublishConfig with defaults applied

        Raises:
            InvalidConfigError: If the file is missing (explicit path only),
                unparseable, or does not match the schema
        """
        if config_file is None:
            candidate = Path.cwd() / CONFIG_FILE_NAME
            if not candidate.exists():
                logger.debug("No %s found, using defaults", CONFIG_FILE_NAME)
                return cls()
            config_file = candidate

        config_file = Path(config_file)
        if not config_file.is_file():
            raise InvalidConfigError(f"file not found: {config_file}")

        try:
            with open(config_file) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"{config_file}: {e}") from e

        if data is None:
            data = {}

        if not isinstance(data, dict):
            raise InvalidConfigError(f"expected a mapping, got {type(data).__name__}")

        _validate_config_schema(data)
        logger.info("Loaded configuration from %s", config_file)
        return cls(config_file=config_file, data=data)

    @classmethod
    def write_default(cls, config_file: Path) -> None:
        """Write the default configuration to ``config_file``."""
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w") as f:
            yaml.dump(cls.DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    @property
    def storage(self) -> dict[str, Any]:
        return self._data["storage"]

    @property
    def modules(self) -> dict[str, Any]:
        return self._data["modules"]

    @property
    def container_name(self) -> str:
        return self.storage.get("container_name") or DEFAULT_CONTAINER_NAME


def _validate_config_schema(config: dict) -> None:
    """Validate config against JSON schema."""
    schema = json.loads(SCHEMA_FILE.read_text())
    try:
        validate(instance=config, schema=schema)
    except ValidationError as e:
        raise InvalidConfigError(
            f"{e.message} (at {'.'.join(str(p) for p in e.path) or '<root>'})"
        ) from e


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        elif value is not None or key not in base:
            base[key] = value
    return base
