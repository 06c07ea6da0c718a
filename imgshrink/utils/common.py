import io
import logging
import os
import zipfile
from typing import BinaryIO, Iterable, Union

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(level=logging.INFO):
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def create_dir(directory):
    """Create directory if it doesn't exist."""
    if directory and not os.path.exists(directory):
        os.makedirs(directory)


def change_file_extension(filename: str, extension: str) -> str:
    """Swap the extension of filename, e.g. photo.png -> photo.jpg"""
    name, _ = os.path.splitext(filename)
    return f"{name}.{extension}"


def format_file_size(size_bytes: int) -> str:
    """Human-readable size with a 1024 base, e.g. 1536 -> '1.5 KB'."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f}".rstrip('0').rstrip('.') + f" {units[unit]}"


def unique_name(name, seen):
    """Return name, or name with a _N suffix if it is already in seen; records the result"""
    if name not in seen:
        seen.add(name)
        return name
    stem, ext = os.path.splitext(name)
    counter = 1
    while f"{stem}_{counter}{ext}" in seen:
        counter += 1
    unique = f"{stem}_{counter}{ext}"
    seen.add(unique)
    return unique


def write_archive(results: Iterable, target: Union[str, BinaryIO, None] = None):
    """
    Write compression results into a ZIP archive

    Args:
        results: Objects with `filename` and `data` attributes (CompressionResult)
        target: Path or writable binary stream; an in-memory buffer is created if None

    Returns:
        The target that was written (the BytesIO when none was given, rewound)
    """
    if target is None:
        target = io.BytesIO()
    elif isinstance(target, str):
        create_dir(os.path.dirname(os.path.abspath(target)))

    seen = set()
    with zipfile.ZipFile(target, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for result in results:
            zipf.writestr(unique_name(result.filename, seen), result.data)

    if isinstance(target, io.BytesIO):
        target.seek(0)
    return target
