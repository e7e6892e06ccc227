"""
Azure Blob Storage access for configuration archives.

Credentials are resolved in order: explicit command-line values, then
environment variables, then the ``storage`` section of dsc-publish.yaml.
"""

import logging
import os
from pathlib import Path

from azure.core.exceptions import AzureError, ResourceExistsError
from azure.storage.blob import BlobServiceClient, ContainerClient

from dsc_publish.exceptions import (
    BlobAlreadyExistsError,
    DscPublishError,
    InvalidStorageCredentialsError,
    StorageContextMissingError,
)
from dsc_publish.models import StorageContext
from dsc_publish.util.redact import redact_sensitive

logger = logging.getLogger(__name__)

CONNECTION_STRING_ENV = "AZURE_STORAGE_CONNECTION_STRING"
ACCOUNT_NAME_ENV = "AZURE_STORAGE_ACCOUNT"
ACCOUNT_KEY_ENV = "AZURE_STORAGE_KEY"
SAS_TOKEN_ENV = "AZURE_STORAGE_SAS_TOKEN"


class StorageOperationError(DscPublishError):
    """Blob storage request failed."""

    error_id = "StorageOperationFailed"

    def __init__(self, operation: str, error: Exception):
        super().__init__(f"Blob storage {operation} failed: {redact_sensitive(str(error))}")


def resolve_storage_context(
    context: StorageContext | None = None, storage_config: dict | None = None
) -> StorageContext:
    """
    Work out which credentials to use for an upload.

    Args:
        context: Values supplied on the command line, if any
        storage_config: ``storage`` section of the loaded configuration

    Returns:
        A StorageContext able to authenticate

    Raises:
        StorageContextMissingError: If no usable credentials are found
    """
    storage_config = storage_config or {}
    context = context or StorageContext()
    endpoint_suffix = storage_config.get("endpoint_suffix") or context.endpoint_suffix

    if context.auth_method != "none":
        if context.connection_string or context.account_name:
            return context
        raise StorageContextMissingError()

    connection_string = os.environ.get(CONNECTION_STRING_ENV)
    if connection_string and not context.account_name:
        logger.debug("Using storage connection string from %s", CONNECTION_STRING_ENV)
        return StorageContext(connection_string=connection_string, endpoint_suffix=endpoint_suffix)

    account_name = (
        context.account_name
        or os.environ.get(ACCOUNT_NAME_ENV)
        or storage_config.get("account_name")
    )
    if not account_name:
        raise StorageContextMissingError()

    account_key = os.environ.get(ACCOUNT_KEY_ENV)
    sas_token = os.environ.get(SAS_TOKEN_ENV)
    if account_key or sas_token:
        return StorageContext(
            account_name=account_name,
            account_key=account_key,
            sas_token=None if account_key else sas_token,
            endpoint_suffix=endpoint_suffix,
        )

    if storage_config.get("use_default_credential", True):
        logger.debug("Using DefaultAzureCredential for storage account %s", account_name)
        return StorageContext(
            account_name=account_name,
            endpoint_suffix=endpoint_suffix,
            use_default_credential=True,
        )

    raise StorageContextMissingError()


def create_blob_service_client(context: StorageContext) -> BlobServiceClient:
    """
    Build a BlobServiceClient for the resolved credentials.

    Raises:
        InvalidStorageCredentialsError: If the connection string or account is malformed
    """
    try:
        if context.connection_string:
            return BlobServiceClient.from_connection_string(context.connection_string)
        return BlobServiceClient(account_url=context.account_url, credential=_credential(context))
    except ValueError as e:
        raise InvalidStorageCredentialsError(redact_sensitive(str(e))) from e


def _credential(context: StorageContext):
    """Account key, SAS token or DefaultAzureCredential, in that order."""
    if context.account_key:
        return {"account_name": context.account_name, "account_key": context.account_key}
    if context.sas_token:
        return context.sas_token.lstrip("?")

    from azure.identity import DefaultAzureCredential

    return DefaultAzureCredential()


class BlobUploader:
    """Uploads configuration archives into a blob container."""

    def __init__(self, blob_service: BlobServiceClient):
        self.blob_service = blob_service

    def ensure_container(self, container: ContainerClient) -> ContainerClient:
        """Create the container if it does not exist yet."""
        try:
            container.create_container()
            logger.info("Created blob container: %s", container.container_name)
        except ResourceExistsError:
            logger.debug("Blob container already exists: %s", container.container_name)
        except AzureError as e:
            raise StorageOperationError(f"create container '{container.container_name}'", e) from e
        return container

    def upload(self, archive_path: Path, container_name: str, force: bool, should_process) -> str | None:
        """
        Upload an archive as ``<container>/<archive file name>``.

        Args:
            archive_path: Local ZIP file
            container_name: Destination container (created if absent)
            force: Overwrite an existing blob
            should_process: Callback ``(action, target) -> bool``; the upload is
                skipped when it returns False

        Returns:
            The blob URL, or None when the upload was skipped

        Raises:
            BlobAlreadyExistsError: If the blob exists and ``force`` is not set
            StorageOperationError: If a storage request fails
        """
        container = self.blob_service.get_container_client(container_name)
        blob = container.get_blob_client(archive_path.name)

        if not should_process(f"Upload '{archive_path}' to blob storage", blob.url):
            return None

        self.ensure_container(container)
        try:
            if not force and blob.exists():
                raise BlobAlreadyExistsError(blob.url)

            with open(archive_path, "rb") as data:
                blob.upload_blob(data, overwrite=force)
        except ResourceExistsError as e:
            # Created by someone else after the existence check
            raise BlobAlreadyExistsError(blob.url) from e
        except AzureError as e:
            raise StorageOperationError(f"upload of '{archive_path.name}'", e) from e

        logger.info("Configuration archive uploaded to %s", blob.url)
        return blob.url
