"""
Tests for dsc-publish.yaml loading and validation.
"""

import pytest
import yaml

from dsc_publish.config import CONFIG_FILE_NAME, DEFAULT_CONTAINER_NAME, PublishConfig
from dsc_publish.exceptions import InvalidConfigError


class TestDefaults:
    """Tests for the built-in defaults."""

    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        """Test loading without a config file present."""
        monkeypatch.chdir(tmp_path)

        config = PublishConfig.load()

        assert config.config_file is None
        assert config.container_name == DEFAULT_CONTAINER_NAME
        assert config.modules["resolver"] == "powershell"
        assert config.storage["use_default_credential"] is True

    def test_data_merged_over_defaults(self):
        """Test partial sections keep their other defaults."""
        config = PublishConfig(data={"modules": {"resolver": "path"}})

        assert config.modules["resolver"] == "path"
        assert config.modules["powershell_executable"] == "pwsh"
        assert config.storage["endpoint_suffix"] == "core.windows.net"

    def test_defaults_not_shared(self):
        """Test one instance cannot change another's defaults."""
        first = PublishConfig()
        first.modules["module_paths"].append("/tmp/modules")

        assert PublishConfig().modules["module_paths"] == []

    def test_as_dict_is_a_copy(self):
        config = PublishConfig()
        data = config.as_dict()
        data["storage"]["container_name"] = "changed"

        assert config.container_name == DEFAULT_CONTAINER_NAME


class TestLoad:
    """Tests for reading configuration files."""

    def test_file_in_working_directory(self, tmp_path, monkeypatch):
        """Test dsc-publish.yaml is discovered in the working directory."""
        (tmp_path / CONFIG_FILE_NAME).write_text(
            "storage:\n  container_name: dsc-configs\n  account_name: devstore\n"
        )
        monkeypatch.chdir(tmp_path)

        config = PublishConfig.load()

        assert config.config_file == tmp_path / CONFIG_FILE_NAME
        assert config.container_name == "dsc-configs"
        assert config.storage["account_name"] == "devstore"

    def test_explicit_file(self, tmp_path):
        """Test an explicit path."""
        path = tmp_path / "custom.yaml"
        path.write_text("modules:\n  resolver: path\n  module_paths:\n    - /opt/modules\n")

        config = PublishConfig.load(path)

        assert config.modules["module_paths"] == ["/opt/modules"]

    def test_explicit_file_missing(self, tmp_path):
        """Test an explicit path that does not exist."""
        with pytest.raises(InvalidConfigError, match="file not found"):
            PublishConfig.load(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        """Test an empty file means defaults."""
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text("")

        assert PublishConfig.load(path).container_name == DEFAULT_CONTAINER_NAME

    def test_invalid_yaml(self, tmp_path):
        """Test unparseable YAML."""
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text("storage: [unclosed\n")

        with pytest.raises(InvalidConfigError):
            PublishConfig.load(path)

    def test_not_a_mapping(self, tmp_path):
        """Test a YAML list at the top level."""
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text("- storage\n")

        with pytest.raises(InvalidConfigError, match="expected a mapping"):
            PublishConfig.load(path)

    @pytest.mark.parametrize(
        "content",
        [
            "modules:\n  resolver: nuget\n",
            "modules:\n  timeout: 0\n",
            "storage:\n  container_name: Not_Valid\n",
            "storage:\n  account_name: UPPER\n",
            "unknown_section: {}\n",
        ],
    )
    def test_schema_violations(self, tmp_path, content):
        """Test values the schema rejects."""
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text(content)

        with pytest.raises(InvalidConfigError) as exc_info:
            PublishConfig.load(path)

        assert "dsc-publish init" in exc_info.value.suggestion


class TestWriteDefault:
    """Tests for generating the default configuration file."""

    def test_round_trip(self, tmp_path):
        """Test the written defaults load back unchanged."""
        path = tmp_path / "nested" / CONFIG_FILE_NAME

        PublishConfig.write_default(path)

        assert yaml.safe_load(path.read_text()) == PublishConfig.DEFAULT_CONFIG
        assert PublishConfig.load(path).as_dict() == PublishConfig.DEFAULT_CONFIG
