import os
import logging
import mimetypes
from typing import Iterable, List

from imgshrink.compression.types import ImageUpload

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp', '.tif', '.tiff')


def is_image_file(filename):
    return filename.lower().endswith(IMAGE_EXTENSIONS)


def collect_image_paths(paths: Iterable[str]) -> List[str]:
    """
    Expand files and directories into a list of image paths

    Args:
        paths: Files and/or directories. Directories are scanned (not recursively)
               for files with a known image extension.

    Returns:
        list: Image paths in the order given, each directory's images sorted by
              name; a path reached twice is kept at its first position
    """
    found = {}
    for path in paths:
        if os.path.isdir(path):
            image_files = sorted(f for f in os.listdir(path) if is_image_file(f))
            for file in image_files:
                found.setdefault(os.path.join(path, file), None)
        elif os.path.isfile(path):
            found.setdefault(path, None)
        else:
            logging.warning(f"Skipping missing input {path}")
    return list(found)


def load_uploads(paths: Iterable[str]) -> List[ImageUpload]:
    """
    Read image files into ImageUploads

    Files that cannot be read are logged and skipped; decoding happens later,
    per image, so a corrupt file only affects its own slot.
    """
    uploads = []
    for path in paths:
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            logging.error(f"Error reading {path}: {e}")
            continue
        uploads.append(ImageUpload(
            name=os.path.basename(path),
            data=data,
            media_type=mimetypes.guess_type(path)[0],
        ))
    return uploads
