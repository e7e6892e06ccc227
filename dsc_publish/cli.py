"""
CLI entry point for dsc-publish.
"""

import logging
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from dsc_publish.config import CONFIG_FILE_NAME, PublishConfig
from dsc_publish.exceptions import (
    AmbiguousModeError,
    ConfigFileAlreadyExistsError,
    DscPublishError,
    format_error_for_cli,
)
from dsc_publish.models import (
    CreateArchiveRequest,
    PublishRequest,
    StorageContext,
    UploadArchiveRequest,
)
from dsc_publish.publish import ConfigurationPublisher, ConfirmationPolicy
from dsc_publish.validation import ARCHIVE_ALLOWED_EXTENSIONS, check_configuration_file

app = typer.Typer(
    name="dsc-publish",
    help="Package PowerShell DSC configurations and publish them to Azure Blob Storage",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DscPublishError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except (typer.Exit, typer.Abort):
            raise
        except Exception as e:
            logger.debug("Unexpected error", exc_info=True)
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            console.print("\n[yellow]Run again with --verbose for more detail.[/yellow]")
            raise typer.Exit(1)

    return wrapper


def configure_logging(verbose: bool) -> None:
    """Route package log records through rich; INFO when verbose, else WARNING."""
    package_logger = logging.getLogger("dsc_publish")
    package_logger.setLevel(logging.INFO if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
        )


def build_request(
    configuration_path: str,
    archive_path: str | None = None,
    container_name: str | None = None,
    connection_string: str | None = None,
    account_name: str | None = None,
    account_key: str | None = None,
    sas_token: str | None = None,
    force: bool = False,
) -> PublishRequest:
    """
    Map command-line options onto a request type.

    ``--archive-path`` selects archive mode; anything storage related selects
    upload mode. Mixing the two is rejected.
    """
    upload_options = {
        "--container-name": container_name,
        "--connection-string": connection_string,
        "--account-name": account_name,
        "--account-key": account_key,
        "--sas-token": sas_token,
    }

    if archive_path:
        used = [option for option, value in upload_options.items() if value]
        if used:
            raise AmbiguousModeError(used)
        return CreateArchiveRequest(Path(configuration_path), Path(archive_path), force)

    storage_context = None
    if any((connection_string, account_name, account_key, sas_token)):
        storage_context = StorageContext(
            account_name=account_name,
            account_key=account_key,
            sas_token=sas_token,
            connection_string=connection_string,
        )
    return UploadArchiveRequest(Path(configuration_path), container_name, storage_context, force)


@app.command()
@handle_errors
def publish(
    configuration_path: str = typer.Argument(
        ..., help="DSC configuration script (.ps1/.psm1), or an existing .zip to upload"
    ),
    archive_path: str = typer.Option(
        None, "--archive-path", help="Write a local ZIP archive instead of uploading"
    ),
    container_name: str = typer.Option(
        None, "--container-name", help="Blob container to upload to (default from config)"
    ),
    connection_string: str = typer.Option(
        None, "--connection-string", help="Storage account connection string"
    ),
    account_name: str = typer.Option(None, "--account-name", help="Storage account name"),
    account_key: str = typer.Option(None, "--account-key", help="Storage account key"),
    sas_token: str = typer.Option(None, "--sas-token", help="Shared access signature token"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing archive or blob"),
    what_if: bool = typer.Option(
        False, "--what-if", help="Show what would be written without writing it"
    ),
    confirm: bool = typer.Option(False, "--confirm", help="Ask before writing"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every confirmation"),
    config_file: str = typer.Option(None, "--config", help=f"Path to {CONFIG_FILE_NAME}"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress messages"),
):
    """Package a configuration and its modules, then upload or save the archive."""
    configure_logging(verbose)
    config = PublishConfig.load(Path(config_file) if config_file else None)

    request = build_request(
        configuration_path,
        archive_path=archive_path,
        container_name=container_name,
        connection_string=connection_string,
        account_name=account_name,
        account_key=account_key,
        sas_token=sas_token,
        force=force,
    )
    confirmation = ConfirmationPolicy(
        what_if=what_if,
        confirm=confirm,
        yes_to_all=yes,
        prompt=lambda message: typer.confirm(message, default=False),
    )

    publisher = ConfigurationPublisher(config=config, confirmation=confirmation)
    result = publisher.publish(request)

    for message in confirmation.simulated:
        console.print(f"[yellow]{message}[/yellow]")

    if not result.performed:
        if not what_if:
            console.print("[yellow]⚠ Operation cancelled, nothing was written[/yellow]")
        return

    if result.mode == "archive":
        console.print(f"[green]✓ Configuration archive written to {result.archive_path}[/green]")
    else:
        console.print(f"[green]✓ Uploaded to {result.blob_url}[/green]")

    if result.required_modules:
        console.print(f"[green]✓ Modules: {', '.join(result.required_modules)}[/green]")
    console.print(f"[green]✓ SHA256: {result.sha256}[/green]")


@app.command()
@handle_errors
def modules(
    configuration_path: str = typer.Argument(..., help="DSC configuration script (.ps1/.psm1)"),
    config_file: str = typer.Option(None, "--config", help=f"Path to {CONFIG_FILE_NAME}"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress messages"),
):
    """List the modules that would be packaged with a configuration."""
    from rich.table import Table

    configure_logging(verbose)
    config = PublishConfig.load(Path(config_file) if config_file else None)
    path = check_configuration_file(configuration_path, ARCHIVE_ALLOWED_EXTENSIONS)

    required = ConfigurationPublisher(config=config).required_modules(path)

    if not required:
        console.print("[dim]No modules to package besides the configuration itself[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Module")
    table.add_column("Version")
    for name, version in required.items():
        table.add_row(name, version or "[dim]latest[/dim]")
    console.print(table)


@app.command()
@handle_errors
def init(
    directory: str = typer.Argument(".", help="Directory to write the configuration file to"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file"),
):
    """Write a default dsc-publish.yaml."""
    config_file = Path(directory) / CONFIG_FILE_NAME
    if config_file.exists() and not force:
        raise ConfigFileAlreadyExistsError(str(config_file))

    PublishConfig.write_default(config_file)
    console.print(f"[green]✓ Wrote default configuration to {config_file}[/green]")

    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  # Set storage.account_name in {config_file}")
    console.print("  dsc-publish publish <configuration.ps1>")


if __name__ == "__main__":
    app()
