"""Dataclasses shared by the publishing pipeline.

A publish run is described by exactly one request type: ``CreateArchiveRequest``
writes a local configuration archive, ``UploadArchiveRequest`` builds (or reuses)
an archive and uploads it to a blob container.
"""

from dataclasses import dataclass, field
from pathlib import Path

BUILTIN_DSC_MODULE = "PSDesiredStateConfiguration"


@dataclass(frozen=True)
class ParseIssue:
    """A single error reported while reading a configuration script."""

    message: str
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"At line:{self.line} char:{self.column}: {self.message}"


@dataclass
class ConfigurationParseResult:
    """Modules imported by a configuration script, plus any parse errors."""

    path: Path
    required_modules: dict[str, str | None] = field(default_factory=dict)
    errors: list[ParseIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class StorageContext:
    """Credentials used to reach a storage account.

    Exactly one of ``connection_string``, ``account_key`` or ``sas_token`` is
    normally set; when none is, ``use_default_credential`` selects the ambient
    Azure identity for ``account_name``.
    """

    account_name: str | None = None
    account_key: str | None = None
    sas_token: str | None = None
    connection_string: str | None = None
    endpoint_suffix: str = "core.windows.net"
    use_default_credential: bool = False

    @property
    def account_url(self) -> str:
        return f"https://{self.account_name}.blob.{self.endpoint_suffix}"

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks
        return (
            f"StorageContext(account_name={self.account_name!r}, "
            f"endpoint_suffix={self.endpoint_suffix!r}, "
            f"auth={self.auth_method!r})"
        )

    @property
    def auth_method(self) -> str:
        if self.connection_string:
            return "connection_string"
        if self.account_key:
            return "shared_key"
        if self.sas_token:
            return "sas"
        if self.use_default_credential:
            return "default_credential"
        return "none"


@dataclass(frozen=True)
class CreateArchiveRequest:
    """Write the configuration and its modules to a local ZIP file."""

    configuration_path: Path
    archive_path: Path
    force: bool = False


@dataclass(frozen=True)
class UploadArchiveRequest:
    """Upload the configuration archive to a blob container."""

    configuration_path: Path
    container_name: str | None = None
    storage_context: StorageContext | None = None
    force: bool = False


PublishRequest = CreateArchiveRequest | UploadArchiveRequest


@dataclass
class PublishResult:
    """Outcome of a publish run."""

    mode: str  # archive | upload
    archive_path: Path | None = None
    blob_url: str | None = None
    performed: bool = True  # False when skipped by what-if or declined
    sha256: str | None = None
    required_modules: dict[str, str | None] = field(default_factory=dict)
