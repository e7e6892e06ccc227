"""
Publish a DSC configuration: build its archive, then keep it or upload it.

Archive mode:  validated -> parsed -> staged -> archived -> done
Upload mode:   validated -> (parsed -> staged -> archived | already a .zip)
               -> confirmed -> uploaded -> done

Both end by deleting every temporary file and folder the run created.
"""

import logging
from collections.abc import Callable
from pathlib import Path

from dsc_publish.archive import (
    ZIP_EXTENSION,
    archive_checksum,
    create_archive,
    local_archive_target,
    temporary_archive_target,
)
from dsc_publish.config import PublishConfig
from dsc_publish.models import (
    CreateArchiveRequest,
    PublishRequest,
    PublishResult,
    StorageContext,
    UploadArchiveRequest,
)
from dsc_publish.modules import ModuleResolver, get_resolver
from dsc_publish.parser import load_required_modules
from dsc_publish.staging import TemporaryResources, build_staging_directory
from dsc_publish.storage import BlobUploader, create_blob_service_client
from dsc_publish.validation import validate_request

logger = logging.getLogger(__name__)

CREATE_ARCHIVE_ACTION = "Create configuration archive"


class ConfirmationPolicy:
    """
    Decides whether a side effect may run.

    - ``what_if``: describe the action and skip it
    - ``confirm``: ask ``prompt`` first, unless ``yes_to_all`` is set
    """

    def __init__(
        self,
        what_if: bool = False,
        confirm: bool = False,
        yes_to_all: bool = False,
        prompt: Callable[[str], bool] | None = None,
    ):
        self.what_if = what_if
        self.confirm = confirm
        self.yes_to_all = yes_to_all
        self.prompt = prompt
        self.simulated: list[str] = []

    def should_process(self, action: str, target: str) -> bool:
        description = f'Performing the operation "{action}" on target "{target}".'

        if self.what_if:
            message = f"What if: {description}"
            logger.info(message)
            self.simulated.append(message)
            return False

        if self.confirm and not self.yes_to_all:
            if self.prompt is None:
                logger.warning("Confirmation required but no prompt available; skipping: %s", description)
                return False
            return self.prompt(f"Are you sure you want to perform this action?\n{description}")

        return True


class ConfigurationPublisher:
    """Runs one publish request end to end."""

    def __init__(
        self,
        config: PublishConfig | None = None,
        resolver: ModuleResolver | None = None,
        confirmation: ConfirmationPolicy | None = None,
        blob_service_factory: Callable[[StorageContext], object] = create_blob_service_client,
        temp_root: Path | None = None,
    ):
        self.config = config or PublishConfig()
        self.resolver = resolver or get_resolver(self.config)
        self.confirmation = confirmation or ConfirmationPolicy()
        self.blob_service_factory = blob_service_factory
        self.temp_root = temp_root
        self._handlers = {
            CreateArchiveRequest: self._create_archive,
            UploadArchiveRequest: self._upload_archive,
        }

    def publish(self, request: PublishRequest) -> PublishResult:
        """
        Validate and execute a request.

        Temporary files are always removed before this returns or raises.

        Raises:
            DscPublishError: Any terminating failure, with its category
        """
        handler = self._handlers.get(type(request))
        if handler is None:
            raise TypeError(f"Unsupported publish request: {type(request).__name__}")

        request = validate_request(request, self.config)
        with TemporaryResources(self.temp_root) as resources:
            return handler(request, resources)

    def required_modules(self, configuration_path: Path) -> dict[str, str | None]:
        """Modules that would be packaged with a configuration."""
        return load_required_modules(configuration_path, self.resolver)

    def _create_archive(
        self, request: CreateArchiveRequest, resources: TemporaryResources
    ) -> PublishResult:
        if not self.confirmation.should_process(CREATE_ARCHIVE_ACTION, str(request.archive_path)):
            return PublishResult(mode="archive", archive_path=request.archive_path, performed=False)

        target = local_archive_target(request.archive_path, request.force)
        modules = self._build_archive(request.configuration_path, target, resources)

        return PublishResult(
            mode="archive",
            archive_path=target,
            sha256=archive_checksum(target),
            required_modules=modules,
        )

    def _upload_archive(
        self, request: UploadArchiveRequest, resources: TemporaryResources
    ) -> PublishResult:
        configuration_path = request.configuration_path
        # Bad credentials fail before anything is staged
        uploader = BlobUploader(self.blob_service_factory(request.storage_context))

        if configuration_path.suffix.lower() == ZIP_EXTENSION:
            logger.info("%s is already an archive; uploading it as is", configuration_path)
            archive = configuration_path
            modules: dict[str, str | None] = {}
        else:
            archive = temporary_archive_target(configuration_path, resources)
            modules = self._build_archive(configuration_path, archive, resources)

        checksum = archive_checksum(archive)
        blob_url = uploader.upload(
            archive, request.container_name, request.force, self.confirmation.should_process
        )

        return PublishResult(
            mode="upload",
            archive_path=archive if archive == configuration_path else None,
            blob_url=blob_url,
            performed=blob_url is not None,
            sha256=checksum,
            required_modules=modules,
        )

    def _build_archive(
        self, configuration_path: Path, archive_path: Path, resources: TemporaryResources
    ) -> dict[str, str | None]:
        self.resolver.ensure_supported()
        modules = load_required_modules(configuration_path, self.resolver)
        staging = build_staging_directory(configuration_path, modules, self.resolver, resources)
        create_archive(staging, archive_path)
        return modules
