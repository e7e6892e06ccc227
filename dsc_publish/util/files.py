"""
File utility functions.
"""

import codecs
import os
import shutil
import stat
from pathlib import Path

# UTF-32 first: its little-endian BOM starts with the UTF-16 one
_BYTE_ORDER_MARKS = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


def read_script(path: str | Path) -> str:
    """
    Decode a PowerShell file the way PowerShell does: by its byte order mark, else UTF-8.

    Raises:
        OSError: If the file cannot be read
        UnicodeDecodeError: If the bytes do not match the detected encoding
    """
    data = Path(path).read_bytes()
    for bom, encoding in _BYTE_ORDER_MARKS:
        if data.startswith(bom):
            return data[len(bom) :].decode(encoding)
    return data.decode("utf-8")


def clear_readonly(path: str | Path) -> None:
    """Turn off the read-only bit on a file or directory."""
    mode = os.stat(path).st_mode
    if not mode & stat.S_IWRITE:
        os.chmod(path, mode | stat.S_IWRITE)


def remove_file(path: str | Path) -> None:
    """
    Delete a file, retrying once with the read-only attribute cleared.

    Raises:
        OSError: If the file still cannot be deleted
    """
    try:
        os.remove(path)
    except PermissionError:
        clear_readonly(path)
        os.remove(path)


def remove_tree(path: str | Path) -> None:
    """
    Delete a directory tree, clearing read-only attributes depth-first
    when a plain recursive delete is refused.

    Raises:
        OSError: If the tree still cannot be deleted
    """
    try:
        shutil.rmtree(path)
    except PermissionError:
        _remove_readonly_tree(Path(path))


def _remove_readonly_tree(directory: Path) -> None:
    clear_readonly(directory)

    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            _remove_readonly_tree(child)
        else:
            if not child.is_symlink():
                clear_readonly(child)
            child.unlink()

    directory.rmdir()
