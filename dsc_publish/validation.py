"""
Request validation for the publishing pipeline.

Runs before anything is parsed, staged or uploaded.
"""

import os
import re
from dataclasses import replace
from pathlib import Path

from dsc_publish.config import PublishConfig
from dsc_publish.exceptions import (
    ConfigurationFileNotFoundError,
    InvalidArgumentError,
    InvalidConfigurationExtensionError,
)
from dsc_publish.models import CreateArchiveRequest, PublishRequest, UploadArchiveRequest
from dsc_publish.storage import resolve_storage_context

UPLOAD_ALLOWED_EXTENSIONS = (".ps1", ".psm1", ".zip")
ARCHIVE_ALLOWED_EXTENSIONS = (".ps1", ".psm1")

CONTAINER_NAME_PATTERN = re.compile(r"^[a-z0-9](?!.*--)[a-z0-9-]{1,61}[a-z0-9]$")


def validate_request(request: PublishRequest, config: PublishConfig) -> PublishRequest:
    """
    Validate a publish request and return it with every value resolved.

    - configuration and archive paths become absolute
    - upload requests get storage credentials and a container name

    Raises:
        InvalidArgumentError: For a missing file, a disallowed extension,
            an invalid container name or missing storage credentials
    """
    if isinstance(request, UploadArchiveRequest):
        configuration_path = check_configuration_file(
            request.configuration_path, UPLOAD_ALLOWED_EXTENSIONS
        )
        container_name = request.container_name or config.container_name
        if not CONTAINER_NAME_PATTERN.match(container_name):
            raise InvalidArgumentError(
                f"Invalid container name: {container_name}",
                "Container names are 3-63 characters of lowercase letters, digits and "
                "single hyphens, starting and ending with a letter or digit.",
            )
        storage_context = resolve_storage_context(request.storage_context, config.storage)
        return replace(
            request,
            configuration_path=configuration_path,
            container_name=container_name,
            storage_context=storage_context,
        )

    if isinstance(request, CreateArchiveRequest):
        configuration_path = check_configuration_file(
            request.configuration_path, ARCHIVE_ALLOWED_EXTENSIONS
        )
        return replace(
            request,
            configuration_path=configuration_path,
            archive_path=absolute_path(request.archive_path),
        )

    raise TypeError(f"Unsupported publish request: {type(request).__name__}")


def absolute_path(path: str | Path) -> Path:
    """Make a path absolute without resolving symlinks."""
    return Path(os.path.abspath(Path(path).expanduser()))


def check_configuration_file(path: str | Path, allowed: tuple[str, ...]) -> Path:
    """Resolve a configuration path, checking its extension before touching the disk."""
    configuration_path = absolute_path(path)

    if configuration_path.suffix.lower() not in allowed:
        raise InvalidConfigurationExtensionError(str(configuration_path), list(allowed))

    if not configuration_path.is_file():
        raise ConfigurationFileNotFoundError(str(configuration_path))

    return configuration_path
