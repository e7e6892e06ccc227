"""
Tests for blob storage credentials and uploads.
"""

from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError, ResourceExistsError

from dsc_publish.exceptions import (
    BlobAlreadyExistsError,
    DscPublishError,
    ErrorCategory,
    InvalidStorageCredentialsError,
    StorageContextMissingError,
)
from dsc_publish.models import StorageContext
from dsc_publish.storage import (
    BlobUploader,
    StorageOperationError,
    create_blob_service_client,
    resolve_storage_context,
)

CONNECTION_STRING = (
    "DefaultEndpointsProtocol=https;AccountName=devstore;"
    "AccountKey=c2VjcmV0LWtleQ==;EndpointSuffix=core.windows.net"
)


def always(action, target):
    return True


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "demo.ps1.zip"
    path.write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    return path


class TestResolveStorageContext:
    """Tests for choosing credentials."""

    def test_explicit_connection_string(self):
        """Test command-line connection string is used as is."""
        context = StorageContext(connection_string=CONNECTION_STRING)

        assert resolve_storage_context(context) is context

    def test_explicit_account_key(self):
        """Test command-line account and key."""
        context = StorageContext(account_name="devstore", account_key="a2V5")

        assert resolve_storage_context(context).auth_method == "shared_key"

    def test_key_without_account(self):
        """Test a key alone is not enough."""
        with pytest.raises(StorageContextMissingError):
            resolve_storage_context(StorageContext(account_key="a2V5"))

    def test_environment_connection_string(self, monkeypatch):
        """Test AZURE_STORAGE_CONNECTION_STRING."""
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", CONNECTION_STRING)

        context = resolve_storage_context()

        assert context.connection_string == CONNECTION_STRING

    def test_environment_sas_token(self, monkeypatch):
        """Test AZURE_STORAGE_ACCOUNT with AZURE_STORAGE_SAS_TOKEN."""
        monkeypatch.setenv("AZURE_STORAGE_ACCOUNT", "devstore")
        monkeypatch.setenv("AZURE_STORAGE_SAS_TOKEN", "?sv=2024&sig=abc")

        context = resolve_storage_context()

        assert context.auth_method == "sas"
        assert context.account_name == "devstore"

    def test_account_name_with_environment_key(self, monkeypatch):
        """Test --account-name combined with AZURE_STORAGE_KEY."""
        monkeypatch.setenv("AZURE_STORAGE_KEY", "a2V5")
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", CONNECTION_STRING)

        context = resolve_storage_context(StorageContext(account_name="other"))

        assert context.account_name == "other"
        assert context.account_key == "a2V5"
        assert context.connection_string is None

    def test_default_credential_from_config(self):
        """Test the configured account with the ambient Azure identity."""
        context = resolve_storage_context(
            storage_config={"account_name": "devstore", "use_default_credential": True}
        )

        assert context.auth_method == "default_credential"
        assert context.account_url == "https://devstore.blob.core.windows.net"

    def test_endpoint_suffix_from_config(self):
        """Test sovereign cloud endpoints."""
        context = resolve_storage_context(
            storage_config={"account_name": "devstore", "endpoint_suffix": "core.chinacloudapi.cn"}
        )

        assert context.account_url == "https://devstore.blob.core.chinacloudapi.cn"

    def test_default_credential_disabled(self):
        """Test no credentials when the ambient identity is turned off."""
        with pytest.raises(StorageContextMissingError):
            resolve_storage_context(
                storage_config={"account_name": "devstore", "use_default_credential": False}
            )

    def test_nothing_available(self):
        """Test no account at all."""
        with pytest.raises(StorageContextMissingError) as exc_info:
            resolve_storage_context()

        assert exc_info.value.category == ErrorCategory.INVALID_ARGUMENT

    def test_repr_hides_secrets(self):
        """Test keys never appear in the repr."""
        context = StorageContext(account_name="devstore", account_key="c2VjcmV0")

        assert "c2VjcmV0" not in repr(context)
        assert "shared_key" in repr(context)


class TestCreateBlobServiceClient:
    """Tests for building the BlobServiceClient."""

    def test_connection_string(self):
        with patch("dsc_publish.storage.BlobServiceClient") as client_cls:
            create_blob_service_client(StorageContext(connection_string=CONNECTION_STRING))

        client_cls.from_connection_string.assert_called_once_with(CONNECTION_STRING)

    def test_shared_key(self):
        with patch("dsc_publish.storage.BlobServiceClient") as client_cls:
            create_blob_service_client(StorageContext(account_name="devstore", account_key="a2V5"))

        client_cls.assert_called_once_with(
            account_url="https://devstore.blob.core.windows.net",
            credential={"account_name": "devstore", "account_key": "a2V5"},
        )

    def test_sas_token(self):
        with patch("dsc_publish.storage.BlobServiceClient") as client_cls:
            create_blob_service_client(StorageContext(account_name="devstore", sas_token="?sv=1&sig=x"))

        assert client_cls.call_args.kwargs["credential"] == "sv=1&sig=x"

    def test_default_credential(self):
        context = StorageContext(account_name="devstore", use_default_credential=True)

        with patch("dsc_publish.storage.BlobServiceClient") as client_cls, patch(
            "azure.identity.DefaultAzureCredential"
        ) as credential_cls:
            create_blob_service_client(context)

        assert client_cls.call_args.kwargs["credential"] is credential_cls.return_value

    def test_malformed_connection_string(self):
        """Test a connection string without key=value pairs is an argument error."""
        with pytest.raises(InvalidStorageCredentialsError) as exc_info:
            create_blob_service_client(StorageContext(connection_string="garbage"))

        assert isinstance(exc_info.value, DscPublishError)
        assert exc_info.value.category == ErrorCategory.INVALID_ARGUMENT
        assert exc_info.value.error_id == "InvalidArgument"

    def test_incomplete_connection_string(self):
        """Test a connection string without an account is an argument error."""
        with pytest.raises(InvalidStorageCredentialsError):
            create_blob_service_client(StorageContext(connection_string="AccountKey=c2VjcmV0LWtleQ=="))

    def test_client_error_redacted(self):
        """Test secrets echoed by the client library do not reach the message."""
        with patch("dsc_publish.storage.BlobServiceClient") as client_cls:
            client_cls.from_connection_string.side_effect = ValueError(
                "Invalid connection string: AccountName=devstore;AccountKey=c2VjcmV0LWtleQ=="
            )
            with pytest.raises(InvalidStorageCredentialsError) as exc_info:
                create_blob_service_client(StorageContext(connection_string=CONNECTION_STRING))

        assert "AccountKey=REDACTED" in exc_info.value.message
        assert "c2VjcmV0" not in exc_info.value.message


class TestBlobUploader:
    """Tests for uploading archives."""

    def test_upload(self, blob_service, archive):
        """Test a new blob is uploaded into the container."""
        url = BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", False, always)

        container = blob_service.get_container_client.return_value
        blob = container.get_blob_client.return_value
        blob_service.get_container_client.assert_called_once_with("windows-powershell-dsc")
        container.get_blob_client.assert_called_once_with("demo.ps1.zip")
        container.create_container.assert_called_once()
        blob.upload_blob.assert_called_once()
        assert blob.upload_blob.call_args.kwargs["overwrite"] is False
        assert url == blob.url

    def test_existing_container(self, blob_service, archive):
        """Test an existing container is not an error."""
        container = blob_service.get_container_client.return_value
        container.create_container.side_effect = ResourceExistsError("exists")

        url = BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", False, always)

        assert url is not None
        container.get_blob_client.return_value.upload_blob.assert_called_once()

    def test_existing_blob_refused(self, blob_service, archive):
        """Test an existing blob is kept without force."""
        blob = blob_service.get_container_client.return_value.get_blob_client.return_value
        blob.exists.return_value = True

        with pytest.raises(BlobAlreadyExistsError) as exc_info:
            BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", False, always)

        assert exc_info.value.category == ErrorCategory.PERMISSION_DENIED
        assert exc_info.value.error_id == "StorageBlobAlreadyExists"
        blob.upload_blob.assert_not_called()

    def test_existing_blob_forced(self, blob_service, archive):
        """Test force overwrites without checking."""
        blob = blob_service.get_container_client.return_value.get_blob_client.return_value
        blob.exists.return_value = True

        BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", True, always)

        blob.exists.assert_not_called()
        blob.upload_blob.assert_called_once()
        assert blob.upload_blob.call_args.kwargs["overwrite"] is True

    def test_blob_created_after_check(self, blob_service, archive):
        """Test a blob that appears between the check and the upload is not overwritten."""
        blob = blob_service.get_container_client.return_value.get_blob_client.return_value
        blob.exists.return_value = False
        blob.upload_blob.side_effect = ResourceExistsError("BlobAlreadyExists")

        with pytest.raises(BlobAlreadyExistsError) as exc_info:
            BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", False, always)

        assert exc_info.value.error_id == "StorageBlobAlreadyExists"
        assert blob.upload_blob.call_args.kwargs["overwrite"] is False

    def test_declined(self, blob_service, archive):
        """Test nothing touches storage when the upload is declined."""
        container = blob_service.get_container_client.return_value
        blob = container.get_blob_client.return_value
        should_process = MagicMock(return_value=False)

        url = BlobUploader(blob_service).upload(
            archive, "windows-powershell-dsc", False, should_process
        )

        assert url is None
        should_process.assert_called_once()
        assert should_process.call_args[0][1] == blob.url
        container.create_container.assert_not_called()
        blob.upload_blob.assert_not_called()

    def test_upload_failure(self, blob_service, archive):
        """Test service errors are wrapped with secrets removed."""
        blob = blob_service.get_container_client.return_value.get_blob_client.return_value
        blob.upload_blob.side_effect = HttpResponseError(
            message="Forbidden for https://devstore.blob.core.windows.net/c/demo.ps1.zip?sv=1&sig=abc"
        )

        with pytest.raises(StorageOperationError) as exc_info:
            BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", True, always)

        assert "sig=REDACTED" in exc_info.value.message
        assert "abc" not in exc_info.value.message

    def test_container_failure(self, blob_service, archive):
        """Test a container that cannot be created."""
        container = blob_service.get_container_client.return_value
        container.create_container.side_effect = HttpResponseError(message="AuthorizationFailure")

        with pytest.raises(StorageOperationError, match="create container"):
            BlobUploader(blob_service).upload(archive, "windows-powershell-dsc", False, always)
