"""
Custom exceptions for dsc-publish with helpful error messages.

Every error raised by the publishing pipeline is terminating: it carries a
machine-readable category and error id alongside the human-readable message.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    """Machine-readable failure categories."""

    INVALID_ARGUMENT = "InvalidArgument"
    INVALID_OPERATION = "InvalidOperation"
    PERMISSION_DENIED = "PermissionDenied"
    PARSER_ERROR = "ParserError"
    PRECONDITION_FAILURE = "PreconditionFailure"


class DscPublishError(Exception):
    """Base exception for dsc-publish errors."""

    category = ErrorCategory.INVALID_OPERATION
    error_id = "DscPublishError"

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class InvalidArgumentError(DscPublishError):
    """Errors caused by the arguments supplied to a command."""

    category = ErrorCategory.INVALID_ARGUMENT
    error_id = "InvalidArgument"


class ConfigurationFileNotFoundError(InvalidArgumentError):
    """Configuration script does not exist."""

    def __init__(self, file_path: str):
        message = f"Configuration file not found: {file_path}"
        suggestion = (
            "Check that the path is correct and points to a file:\n" f"  ls -l {file_path}"
        )
        super().__init__(message, suggestion)


class InvalidConfigurationExtensionError(InvalidArgumentError):
    """Configuration file extension not allowed for the selected mode."""

    def __init__(self, file_path: str, allowed: list[str]):
        message = f"Invalid configuration file extension: {file_path}"
        suggestion = "The configuration file must be one of: " + ", ".join(allowed)
        if ".zip" not in allowed:
            suggestion += (
                "\n\nExisting .zip archives can only be uploaded, not re-archived:\n"
                f"  dsc-publish publish {file_path}"
            )
        super().__init__(message, suggestion)


class StorageContextMissingError(InvalidArgumentError):
    """No storage credentials could be found for an upload."""

    def __init__(self):
        message = "No storage credentials available for the upload."
        suggestion = (
            "Provide credentials in one of these ways:\n"
            "  --connection-string <connection-string>\n"
            "  --account-name <account> --account-key <key>\n"
            "  --account-name <account> --sas-token <token>\n\n"
            "Or set AZURE_STORAGE_CONNECTION_STRING, or AZURE_STORAGE_ACCOUNT\n"
            "together with AZURE_STORAGE_KEY / AZURE_STORAGE_SAS_TOKEN."
        )
        super().__init__(message, suggestion)


class InvalidStorageCredentialsError(InvalidArgumentError):
    """Storage credentials were supplied but could not be used to build a client."""

    def __init__(self, details: str):
        message = f"Invalid storage credentials: {details}"
        suggestion = (
            "Check the connection string format:\n"
            "  DefaultEndpointsProtocol=https;AccountName=<account>;AccountKey=<key>;"
            "EndpointSuffix=core.windows.net\n\n"
            "Or pass --account-name with --account-key or --sas-token instead."
        )
        super().__init__(message, suggestion)


class AmbiguousModeError(InvalidArgumentError):
    """Archive-only and upload options were mixed."""

    def __init__(self, options: list[str]):
        message = (
            "Parameter set cannot be resolved: --archive-path cannot be combined with "
            + ", ".join(options)
        )
        suggestion = (
            "Either write a local archive:\n"
            "  dsc-publish publish config.ps1 --archive-path config.ps1.zip\n\n"
            "Or upload to blob storage:\n"
            "  dsc-publish publish config.ps1 --container-name <container>"
        )
        super().__init__(message, suggestion)


class PermissionDeniedError(DscPublishError):
    """A resource cannot be read or a destination cannot be written."""

    category = ErrorCategory.PERMISSION_DENIED
    error_id = "PermissionDenied"


class ResourceAccessError(PermissionDeniedError):
    """A DSC resource or the configuration itself could not be accessed."""

    error_id = "CannotAccessDscResource"

    def __init__(self, details: str):
        message = f"Cannot access DSC resource: {details}"
        suggestion = (
            "Make sure the modules providing the resources are installed and readable:\n"
            "  pwsh -Command 'Get-DscResource'"
        )
        super().__init__(message, suggestion)


class ArchiveAlreadyExistsError(PermissionDeniedError):
    """Destination archive exists and overwriting was not allowed."""

    error_id = "FileAlreadyExists"

    def __init__(self, archive_path: str):
        message = f"Configuration archive already exists: {archive_path}"
        suggestion = "Use --force to overwrite the existing archive."
        super().__init__(message, suggestion)


class BlobAlreadyExistsError(PermissionDeniedError):
    """Destination blob exists and overwriting was not allowed."""

    error_id = "StorageBlobAlreadyExists"

    def __init__(self, blob_url: str):
        message = f"Storage blob already exists: {blob_url}"
        suggestion = "Use --force to overwrite the existing blob."
        super().__init__(message, suggestion)


class ConfigurationParseError(DscPublishError):
    """The configuration script failed to parse."""

    category = ErrorCategory.PARSER_ERROR
    error_id = "DscConfigurationParseError"

    def __init__(self, file_path: str, errors: list[str]):
        self.errors = list(errors)
        error_list = "\n".join(self.errors)
        message = f"Configuration file '{file_path}' contains parse errors:\n{error_list}"
        super().__init__(message)


class UnsupportedPowerShellVersionError(DscPublishError):
    """The PowerShell host is too old to build configuration archives."""

    category = ErrorCategory.PRECONDITION_FAILURE
    error_id = "InvalidPowerShellVersion"

    def __init__(self, required: int, actual: int):
        message = (
            f"PowerShell {required} or later is required to create configuration "
            f"archives; found version {actual}."
        )
        suggestion = "Install a current PowerShell release: https://aka.ms/powershell"
        super().__init__(message, suggestion)


class PowerShellNotFoundError(DscPublishError):
    """The PowerShell executable could not be started."""

    category = ErrorCategory.PRECONDITION_FAILURE
    error_id = "PowerShellNotFound"

    def __init__(self, executable: str):
        message = f"PowerShell executable not found: {executable}"
        suggestion = (
            "Install PowerShell, or point dsc-publish at it in dsc-publish.yaml:\n"
            "  modules:\n"
            "    powershell_executable: /usr/local/bin/pwsh\n\n"
            "Or resolve modules without PowerShell:\n"
            "  modules:\n"
            "    resolver: path"
        )
        super().__init__(message, suggestion)


class PowerShellInvocationError(DscPublishError):
    """A PowerShell command failed or timed out."""

    error_id = "PowerShellInvocationFailed"

    def __init__(self, details: str):
        super().__init__(f"PowerShell command failed: {details}")


class DscResourceNotFoundError(DscPublishError):
    """No installed module provides the named DSC resource."""

    error_id = "DscResourceNotFound"

    def __init__(self, resource_name: str):
        message = f"No installed module provides DSC resource '{resource_name}'"
        suggestion = (
            "Import the resource by module instead:\n"
            "  Import-DscResource -ModuleName <Module> -Name " + resource_name
        )
        super().__init__(message, suggestion)


class ModuleResolutionError(DscPublishError):
    """A required module could not be located."""

    error_id = "ModuleNotFound"

    def __init__(self, module_name: str, version: str = None, details: str = None):
        message = f"Cannot find module '{module_name}'"
        if version:
            message += f" with version {version}"
        if details:
            message += f": {details}"
        suggestion = (
            "Install the module on this machine, for example:\n"
            f"  pwsh -Command 'Install-Module {module_name}"
            + (f" -RequiredVersion {version}" if version else "")
            + "'\n\n"
            "Or add its location to modules.module_paths in dsc-publish.yaml."
        )
        super().__init__(message, suggestion)


class ConfigurationError(DscPublishError):
    """Configuration file errors."""

    error_id = "InvalidConfiguration"


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the dsc-publish.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv dsc-publish.yaml dsc-publish.yaml.backup\n"
            "  dsc-publish init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class ConfigFileAlreadyExistsError(ConfigurationError):
    """Configuration file already exists at target location."""

    category = ErrorCategory.PERMISSION_DENIED
    error_id = "FileAlreadyExists"

    def __init__(self, path: str):
        message = f"Configuration file already exists: {path}"
        suggestion = "Edit the existing file, or overwrite it with defaults:\n  dsc-publish init --force"
        super().__init__(message, suggestion)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, DscPublishError):
        output = f"[red]Error ({error.category.value}/{error.error_id}):[/red] {error.message}"
        if error.suggestion:
            output += f"\n\n[yellow]{error.suggestion}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {str(error)}"
