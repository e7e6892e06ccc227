"""
Configuration archive creation.
"""

import contextlib
import hashlib
import logging
import os
import zipfile
from pathlib import Path

from dsc_publish.exceptions import ArchiveAlreadyExistsError
from dsc_publish.staging import TemporaryResources

logger = logging.getLogger(__name__)

ZIP_EXTENSION = ".zip"
CHECKSUM_CHUNK_SIZE = 64 * 1024


def local_archive_target(archive_path: Path, force: bool) -> Path:
    """
    Check a caller-chosen archive destination.

    Raises:
        ArchiveAlreadyExistsError: If the file exists and ``force`` is not set
    """
    if not force and archive_path.exists():
        raise ArchiveAlreadyExistsError(str(archive_path))
    return archive_path


def temporary_archive_target(configuration_path: Path, resources: TemporaryResources) -> Path:
    """Reserve ``<temp dir>/<configuration file name>.zip``, deleted at cleanup."""
    folder = resources.make_directory()
    return resources.register_file(folder / (configuration_path.name + ZIP_EXTENSION))


def create_archive(source_dir: Path, archive_path: Path) -> Path:
    """
    Zip a directory so that entry names mirror paths relative to it.

    The archive is written beside ``archive_path`` first and then moved into
    place, so an existing file there is only replaced by a complete archive.

    Args:
        source_dir: Directory to archive (not itself included)
        archive_path: Destination ZIP file

    Returns:
        The archive path
    """
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    partial = archive_path.with_name(f".{archive_path.name}.{os.getpid()}.partial")
    try:
        _write_zip(source_dir, partial)
        os.replace(partial, archive_path)
    except Exception:
        with contextlib.suppress(OSError):
            os.remove(partial)
        raise

    logger.info("Created configuration archive: %s", archive_path)
    return archive_path


def _write_zip(source_dir: Path, zip_path: Path) -> None:
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for root, dirs, files in os.walk(source_dir):
            dirs.sort()
            root_path = Path(root)
            relative_root = root_path.relative_to(source_dir)

            if not dirs and not files and relative_root != Path("."):
                zf.write(root_path, relative_root.as_posix() + "/")

            for name in sorted(files):
                file_path = root_path / name
                zf.write(file_path, (relative_root / name).as_posix())


def list_archive_modules(archive_path: Path) -> set[str]:
    """Return the top-level folder names in an archive (one per packaged module)."""
    with zipfile.ZipFile(archive_path) as zf:
        return {name.split("/", 1)[0] for name in zf.namelist() if "/" in name}


def archive_checksum(archive_path: Path) -> str:
    """SHA256 hex digest of an archive, read in chunks."""
    digest = hashlib.sha256()
    with open(archive_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHECKSUM_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
