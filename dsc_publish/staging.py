"""
Temporary resource tracking and staging-directory assembly.

A ``TemporaryResources`` instance belongs to a single publish run. Everything
it creates or is told about is deleted when the run ends, whatever the outcome.
"""

import logging
import shutil
import tempfile
from pathlib import Path

from dsc_publish.models import BUILTIN_DSC_MODULE
from dsc_publish.modules import ModuleResolver
from dsc_publish.util.files import remove_file, remove_tree

logger = logging.getLogger(__name__)

TEMP_PREFIX = "dsc-publish-"


class TemporaryResources:
    """
    Tracks temporary files and directories created during one run.

    Usage:
        with TemporaryResources() as resources:
            staging = resources.make_directory()
            ...
        # staging is gone here, even if the body raised
    """

    def __init__(self, temp_root: Path | None = None):
        self.temp_root = temp_root
        self.files: list[Path] = []
        self.directories: list[Path] = []
        self._cleaned = False

    def __enter__(self) -> "TemporaryResources":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def make_directory(self) -> Path:
        """Create and register a fresh temporary directory."""
        path = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=self.temp_root))
        logger.info("Created temporary folder: %s", path)
        self.directories.append(path)
        return path

    def register_file(self, path: Path) -> Path:
        """Schedule a file for deletion at cleanup."""
        self.files.append(Path(path))
        return Path(path)

    def cleanup(self) -> None:
        """
        Delete registered files, then registered directories, newest first.

        Runs at most once. Failures are logged and never raised so they cannot
        mask the outcome of the run.
        """
        if self._cleaned:
            return
        self._cleaned = True

        for path in reversed(self.files):
            if not path.exists():
                continue
            try:
                remove_file(path)
                logger.info("Deleted temporary file: %s", path)
            except OSError as e:
                logger.warning("Could not delete temporary file %s: %s", path, e)

        for path in reversed(self.directories):
            if not path.exists():
                continue
            try:
                remove_tree(path)
                logger.info("Deleted temporary folder: %s", path)
            except OSError as e:
                logger.warning("Could not delete temporary folder %s: %s", path, e)


def build_staging_directory(
    configuration_path: Path,
    required_modules: dict[str, str | None],
    resolver: ModuleResolver,
    resources: TemporaryResources,
) -> Path:
    """
    Assemble the archive contents in a new temporary directory.

    Layout:
        <staging>/<configuration file>
        <staging>/<ModuleName>/...   one folder per required module

    Args:
        configuration_path: Configuration script to include unchanged
        required_modules: Module name -> exact version (or None)
        resolver: Locates each module's installed folder
        resources: Owner of the staging directory

    Returns:
        Path to the staging directory

    Raises:
        ModuleResolutionError: If a module cannot be located
        OSError: If a copy fails
    """
    logger.info(
        "Required modules: %s",
        ", ".join(_describe(name, version) for name, version in required_modules.items())
        or "<none>",
    )

    staging = resources.make_directory()

    destination = staging / configuration_path.name
    logger.info("Copying %s to %s", configuration_path, destination)
    shutil.copy2(configuration_path, destination)

    for name, version in required_modules.items():
        if name.lower() == BUILTIN_DSC_MODULE.lower():
            logger.debug("Skipping built-in module %s", name)
            continue

        module = resolver.resolve(name, version)
        target = staging / module.name
        logger.info("Copying module %s from %s to %s", _describe(module.name, module.version), module.path, target)
        shutil.copytree(module.path, target, symlinks=False)

    return staging


def _describe(name: str, version: str | None) -> str:
    return f"{name} ({version})" if version else name
