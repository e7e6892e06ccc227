"""
Locate installed PowerShell modules.

Two resolvers share the ``ModuleResolver`` interface:
- ``PowerShellModuleResolver`` asks a ``pwsh`` process (``Get-Module -ListAvailable``)
- ``ModulePathResolver`` walks PSModulePath-style directories directly
"""

import json
import logging
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from dsc_publish.exceptions import (
    DscResourceNotFoundError,
    ModuleResolutionError,
    PowerShellInvocationError,
    PowerShellNotFoundError,
    UnsupportedPowerShellVersionError,
)
from dsc_publish.models import BUILTIN_DSC_MODULE
from dsc_publish.util.files import read_script

logger = logging.getLogger(__name__)

MIN_POWERSHELL_MAJOR_VERSION = 4

# Values reach the scripts through the environment, never through string
# interpolation, so a module name cannot inject PowerShell code.
MODULE_NAME_ENV = "DSC_PUBLISH_MODULE_NAME"
MODULE_VERSION_ENV = "DSC_PUBLISH_MODULE_VERSION"
RESOURCE_NAME_ENV = "DSC_PUBLISH_RESOURCE_NAME"

POWERSHELL_VERSION_SCRIPT = "$PSVersionTable.PSVersion.Major"

RESOLVE_MODULE_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$modules = @(Get-Module -ListAvailable -Name $env:DSC_PUBLISH_MODULE_NAME)
if ($env:DSC_PUBLISH_MODULE_VERSION) {
    $wanted = [version]$env:DSC_PUBLISH_MODULE_VERSION
    $modules = @($modules | Where-Object { $_.Version -eq $wanted })
}
$module = $modules | Sort-Object Version -Descending | Select-Object -First 1
if ($module) {
    @{
        Name = $module.Name
        Version = $module.Version.ToString()
        Path = (Split-Path -Parent $module.Path)
    } | ConvertTo-Json -Compress
}
"""

FIND_RESOURCE_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$resource = Get-DscResource -Name $env:DSC_PUBLISH_RESOURCE_NAME | Select-Object -First 1
if ($resource -and $resource.ModuleName) {
    $version = $null
    if ($resource.Version) { $version = $resource.Version.ToString() }
    @{ Name = $resource.ModuleName; Version = $version } | ConvertTo-Json -Compress
}
"""

# Resources shipped inside PSDesiredStateConfiguration itself
BUILTIN_RESOURCES = frozenset(
    name.lower()
    for name in (
        "Archive",
        "Environment",
        "File",
        "Group",
        "GroupSet",
        "Log",
        "Package",
        "ProcessSet",
        "Registry",
        "Script",
        "Service",
        "ServiceSet",
        "SignatureValidation",
        "User",
        "WindowsFeature",
        "WindowsFeatureSet",
        "WindowsOptionalFeature",
        "WindowsOptionalFeatureSet",
        "WindowsProcess",
    )
)

MANIFEST_VERSION_PATTERN = re.compile(r"ModuleVersion\s*=\s*['\"]([^'\"]+)['\"]", re.IGNORECASE)
MOF_FRIENDLY_NAME_PATTERN = re.compile(r"FriendlyName\s*\(\s*\"([^\"]+)\"\s*\)", re.IGNORECASE)
CLASS_RESOURCE_PATTERN = re.compile(r"\[DscResource\([^\]]*\)\]\s*class\s+(\w+)", re.IGNORECASE)


@dataclass(frozen=True)
class ResolvedModule:
    """An installed module: its canonical name, version and base folder."""

    name: str
    version: str | None
    path: Path


class ModuleResolver(ABC):
    """Finds where required modules are installed."""

    @abstractmethod
    def resolve(self, name: str, version: str | None = None) -> ResolvedModule:
        """
        Locate an installed module.

        Args:
            name: Module name (case-insensitive)
            version: Exact version to match, or None for the highest installed

        Returns:
            ResolvedModule whose ``path`` is the folder to package

        Raises:
            ModuleResolutionError: If no matching module is installed
        """

    @abstractmethod
    def find_resource_module(self, resource_name: str) -> tuple[str, str | None]:
        """
        Find the module that provides a DSC resource.

        Returns:
            (module name, module version or None)

        Raises:
            DscResourceNotFoundError: If no installed module provides it
        """

    def ensure_supported(self) -> None:
        """Check host preconditions before any module is resolved."""


class PowerShellModuleResolver(ModuleResolver):
    """Resolves modules by asking PowerShell, exactly as the DSC runtime would."""

    def __init__(self, executable: str = "pwsh", timeout: float = 120):
        self.executable = executable
        self.timeout = timeout
        self._supported = False

    def ensure_supported(self) -> None:
        if self._supported:
            return

        output = self._run(POWERSHELL_VERSION_SCRIPT)
        try:
            major = int(output.splitlines()[-1].strip())
        except (ValueError, IndexError):
            raise PowerShellInvocationError(f"unexpected version output: {output!r}")

        logger.debug("PowerShell major version: %d", major)
        if major < MIN_POWERSHELL_MAJOR_VERSION:
            raise UnsupportedPowerShellVersionError(MIN_POWERSHELL_MAJOR_VERSION, major)
        self._supported = True

    def resolve(self, name: str, version: str | None = None) -> ResolvedModule:
        try:
            output = self._run(
                RESOLVE_MODULE_SCRIPT,
                {MODULE_NAME_ENV: name, MODULE_VERSION_ENV: version or ""},
            )
        except PowerShellInvocationError as e:
            raise ModuleResolutionError(name, version, e.message) from e

        if not output:
            raise ModuleResolutionError(name, version, "Get-Module -ListAvailable found nothing")

        try:
            info = json.loads(output)
        except json.JSONDecodeError as e:
            raise ModuleResolutionError(name, version, f"unexpected output: {output!r}") from e

        path = Path(info["Path"])
        if not path.is_dir():
            raise ModuleResolutionError(name, version, f"module folder does not exist: {path}")

        return ResolvedModule(name=info.get("Name") or name, version=info.get("Version"), path=path)

    def find_resource_module(self, resource_name: str) -> tuple[str, str | None]:
        try:
            output = self._run(FIND_RESOURCE_SCRIPT, {RESOURCE_NAME_ENV: resource_name})
        except PowerShellInvocationError as e:
            raise DscResourceNotFoundError(resource_name) from e

        if not output:
            raise DscResourceNotFoundError(resource_name)

        try:
            info = json.loads(output)
            return info["Name"], info.get("Version")
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.debug("Unexpected Get-DscResource output: %r", output)
            raise DscResourceNotFoundError(resource_name) from e

    def _run(self, script: str, variables: dict[str, str] | None = None) -> str:
        if shutil.which(self.executable) is None:
            raise PowerShellNotFoundError(self.executable)

        env = dict(os.environ)
        env.update(variables or {})
        cmd = [self.executable, "-NoLogo", "-NoProfile", "-NonInteractive", "-Command", script]

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            raise PowerShellInvocationError(f"timed out after {self.timeout}s")
        except OSError as e:
            raise PowerShellInvocationError(str(e)) from e

        if completed.returncode != 0:
            details = (completed.stderr or "").strip() or f"exit code {completed.returncode}"
            raise PowerShellInvocationError(details)

        return (completed.stdout or "").strip()


class ModulePathResolver(ModuleResolver):
    """
    Resolves modules by scanning module directories, without PowerShell.

    Recognised layouts under each root:
      <root>/<Name>/<Name>.psd1
      <root>/<Name>/<Version>/<Name>.psd1
    """

    def __init__(self, module_paths: list[str | Path] | None = None):
        if module_paths:
            self.module_paths = [Path(p).expanduser() for p in module_paths]
        else:
            env_paths = os.environ.get("PSModulePath", "")
            self.module_paths = [Path(p) for p in env_paths.split(os.pathsep) if p]

    def resolve(self, name: str, version: str | None = None) -> ResolvedModule:
        candidates = list(self._installed(name))
        if version is not None:
            candidates = [
                c for c in candidates if c.version and _version_key(c.version) == _version_key(version)
            ]

        if not candidates:
            searched = ", ".join(str(p) for p in self.module_paths) or "<no module paths>"
            raise ModuleResolutionError(name, version, f"searched {searched}")

        # Highest version wins; earlier module paths win ties
        best = max(enumerate(candidates), key=lambda item: (_version_key(item[1].version), -item[0]))
        return best[1]

    def find_resource_module(self, resource_name: str) -> tuple[str, str | None]:
        wanted = resource_name.lower()
        for root in self.module_paths:
            for module_dir in _subdirectories(root):
                for module in self._installed_in(module_dir):
                    if wanted in _resources_in(module.path):
                        return module.name, module.version

        if wanted in BUILTIN_RESOURCES:
            return BUILTIN_DSC_MODULE, None

        raise DscResourceNotFoundError(resource_name)

    def _installed(self, name: str):
        for root in self.module_paths:
            for module_dir in _subdirectories(root):
                if module_dir.name.lower() == name.lower():
                    yield from self._installed_in(module_dir)

    def _installed_in(self, module_dir: Path):
        name = module_dir.name
        if _has_module_file(module_dir, name):
            yield ResolvedModule(name, _manifest_version(module_dir, name), module_dir)

        versions = [d for d in _subdirectories(module_dir) if _version_key(d.name)]
        for version_dir in sorted(versions, key=lambda d: _version_key(d.name), reverse=True):
            if _has_module_file(version_dir, name):
                version = _manifest_version(version_dir, name) or version_dir.name
                yield ResolvedModule(name, version, version_dir)


def get_resolver(config) -> ModuleResolver:
    """
    Factory function to get a module resolver based on config.

    Args:
        config: PublishConfig with a ``modules`` section

    Returns:
        ModuleResolver instance

    Raises:
        ValueError: If the resolver is not supported
    """
    modules_config = config.modules
    resolver_name = modules_config.get("resolver", "powershell").lower()

    if resolver_name == "powershell":
        return PowerShellModuleResolver(
            executable=modules_config.get("powershell_executable", "pwsh"),
            timeout=modules_config.get("timeout", 120),
        )
    if resolver_name == "path":
        return ModulePathResolver(modules_config.get("module_paths") or None)

    raise ValueError(f"Unsupported resolver: {resolver_name}. Must be one of: ['powershell', 'path']")


def _subdirectories(path: Path) -> list[Path]:
    if not path.is_dir():
        return []
    return sorted((p for p in path.iterdir() if p.is_dir()), key=lambda p: p.name.lower())


def _version_key(version: str | None) -> tuple[int, ...]:
    if not version or not re.fullmatch(r"\d+(\.\d+){0,3}", version):
        return ()
    return tuple(int(part) for part in version.split("."))


def _read_module_file(path: Path) -> str:
    try:
        return read_script(path)
    except UnicodeDecodeError as e:
        logger.warning("Skipping undecodable module file %s: %s", path, e.reason)
        return ""


def _files_by_lower_name(directory: Path) -> dict[str, Path]:
    return {p.name.lower(): p for p in directory.iterdir() if p.is_file()}


def _has_module_file(directory: Path, name: str) -> bool:
    files = _files_by_lower_name(directory)
    return any(f"{name.lower()}{ext}" in files for ext in (".psd1", ".psm1", ".dll"))


def _manifest_version(directory: Path, name: str) -> str | None:
    manifest = _files_by_lower_name(directory).get(f"{name.lower()}.psd1")
    if manifest is None:
        return None
    match = MANIFEST_VERSION_PATTERN.search(_read_module_file(manifest))
    return match.group(1) if match else None


def _resources_in(module_path: Path) -> set[str]:
    """Names of the MOF-based and class-based resources a module folder provides."""
    names: set[str] = set()

    for resource_dir in _subdirectories(module_path / "DSCResources"):
        names.add(resource_dir.name.lower())
        for mof in resource_dir.glob("*.schema.mof"):
            match = MOF_FRIENDLY_NAME_PATTERN.search(_read_module_file(mof))
            if match:
                names.add(match.group(1).lower())

    for script in module_path.glob("*.psm1"):
        for match in CLASS_RESOURCE_PATTERN.finditer(_read_module_file(script)):
            names.add(match.group(1).lower())

    return names
