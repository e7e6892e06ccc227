"""
Pytest configuration and shared fixtures.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dsc_publish.config import PublishConfig
from dsc_publish.modules import ModulePathResolver

DEMO_CONFIGURATION = """\
Configuration Demo
{
    Import-DscResource -ModuleName PSDesiredStateConfiguration
    Import-DscResource -ModuleName Foo

    Node localhost
    {
        File Example
        {
            DestinationPath = 'C:\\temp\\example.txt'
            Contents = 'hello'
            Ensure = 'Present'
        }
    }
}
"""


def _write_manifest(folder: Path, name: str, version: str) -> None:
    folder.mkdir(parents=True, exist_ok=True)
    (folder / f"{name}.psd1").write_text(
        "@{\n"
        f"    RootModule = '{name}.psm1'\n"
        f"    ModuleVersion = '{version}'\n"
        "}\n"
    )
    (folder / f"{name}.psm1").write_text(f"function Get-{name} {{ '{version}' }}\n")


@pytest.fixture
def module_root(tmp_path):
    """
    Create an installed-modules tree:

      Foo/1.0.0  (provides the FooResource MOF resource)
      Foo/2.0.0
      Bar        (unversioned layout, provides the BarClass class resource)
      PSDesiredStateConfiguration
    """
    root = tmp_path / "Modules"

    foo_old = root / "Foo" / "1.0.0"
    _write_manifest(foo_old, "Foo", "1.0.0")
    resource_dir = foo_old / "DSCResources" / "MSFT_FooResource"
    resource_dir.mkdir(parents=True)
    (resource_dir / "MSFT_FooResource.schema.mof").write_text(
        '[ClassVersion("1.0.0"), FriendlyName("FooResource")]\n'
        "class MSFT_FooResource : OMI_BaseResource\n{\n};\n"
    )
    (resource_dir / "MSFT_FooResource.psm1").write_text("function Get-TargetResource {}\n")

    _write_manifest(root / "Foo" / "2.0.0", "Foo", "2.0.0")

    bar = root / "Bar"
    _write_manifest(bar, "Bar", "3.1")
    (bar / "Bar.psm1").write_text(
        "[DscResource()]\nclass BarClass\n{\n    [DscProperty(Key)] [string] $Name\n}\n"
    )
    (bar / "lib").mkdir()
    (bar / "lib" / "helper.ps1").write_text("# helper\n")

    _write_manifest(root / "PSDesiredStateConfiguration", "PSDesiredStateConfiguration", "1.1")

    return root


@pytest.fixture
def path_resolver(module_root):
    """Resolver over the fake module tree."""
    return ModulePathResolver([module_root])


@pytest.fixture
def publish_config(module_root):
    """Configuration that resolves modules from the fake tree."""
    return PublishConfig(
        data={
            "storage": {"use_default_credential": False},
            "modules": {"resolver": "path", "module_paths": [str(module_root)]},
        }
    )


@pytest.fixture
def write_configuration(tmp_path):
    """Return a helper that writes a configuration script and returns its path."""

    def _write(content: str = DEMO_CONFIGURATION, name: str = "demo.ps1") -> Path:
        path = tmp_path / "configs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def demo_configuration(write_configuration):
    """Return path to a configuration importing Foo and PSDesiredStateConfiguration."""
    return write_configuration()


@pytest.fixture
def temp_root(tmp_path):
    """Directory that receives every temporary file of a run."""
    root = tmp_path / "tmp"
    root.mkdir()
    return root


@pytest.fixture
def blob_service():
    """Mocked BlobServiceClient with a single container and blob."""
    service = MagicMock(name="BlobServiceClient")
    container = service.get_container_client.return_value
    container.container_name = "windows-powershell-dsc"
    blob = container.get_blob_client.return_value
    blob.url = "https://devstore.blob.core.windows.net/windows-powershell-dsc/demo.ps1.zip"
    blob.exists.return_value = False
    return service


@pytest.fixture(autouse=True)
def clean_storage_env(monkeypatch):
    """Keep ambient storage credentials out of tests."""
    for name in (
        "AZURE_STORAGE_CONNECTION_STRING",
        "AZURE_STORAGE_ACCOUNT",
        "AZURE_STORAGE_KEY",
        "AZURE_STORAGE_SAS_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
