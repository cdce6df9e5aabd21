# imagestore/utils/paths.py
import os
import posixpath
import re
from typing import Callable, Optional

from imagestore.consts import DEFAULT_IMAGE_FOLDER, MAX_FILE_NAME_ATTEMPTS

_INVALID_CHARS = re.compile(r"[^a-z0-9 .\-_/]+", re.IGNORECASE | re.ASCII)


def _clean_folder(path: Optional[str]) -> str:
    """Drop empty, '.' and '..' segments so a folder never leaves the storage root."""
    if not path:
        return ""
    segments = [s for s in path.split("/") if s.strip() not in ("", ".", "..")]
    return "/".join(segments)


def clean(file: Optional[str], default_folder: Optional[str] = None) -> dict:
    """
    Replace any invalid characters in a file path and split it up.

    Args:
        file: Name of file, optionally with folder (e.g. 'boop.png', 'images/boop.png')
        default_folder: Folder to use when the path does not carry one

    Returns:
        Dict with any of the keys:
        - name: name of file, excluding extension and folder
        - extension: extension of file, including the leading dot
        - folder: folder of the file
        An empty dict for empty or fully invalid input.
    """
    clean_path = _INVALID_CHARS.sub("", file or "")
    if not clean_path.strip():
        return {}
    fallback = _clean_folder(_INVALID_CHARS.sub("", default_folder or ""))

    # Directory reference rather than a file
    if "." not in clean_path:
        folder = _clean_folder(clean_path) or fallback
        return {"folder": folder} if folder else {}

    folder = _clean_folder(posixpath.dirname(clean_path)) or fallback
    name, extension = posixpath.splitext(posixpath.basename(clean_path))
    if not name.strip(". "):
        return {"folder": folder} if folder else {}
    result = {"name": name, "extension": extension}
    if folder:
        result["folder"] = folder
    return result


def join_src(folder: Optional[str], name: str, extension: str = "") -> str:
    return f"{folder}/{name}{extension}" if folder else f"{name}{extension}"


def find_file_name(
    file: str,
    default_folder: Optional[str] = None,
    exists: Callable[[str], bool] = os.path.exists,
    suffix: str = "",
    max_attempts: int = MAX_FILE_NAME_ATTEMPTS,
) -> dict:
    """
    Find a file name that is free at the specified path.

    If 'billy.png' is taken, tries 'billy-0.png', 'billy-1.png', etc. ``suffix``
    is appended to the name for the existence probe only, for callers that
    store the file under a decorated name (e.g. 'billy-XXL.png').

    The name is only guaranteed free at check time; callers must treat a
    collision on write as retryable.

    Returns:
        Same shape as ``clean``, or an empty dict when no free name was found.
    """
    parts = clean(file, default_folder)
    name, extension = parts.get("name"), parts.get("extension", "")
    if not name:
        return {}
    folder = parts.get("folder")
    if not exists(join_src(folder, f"{name}{suffix}", extension)):
        return parts
    for attempt in range(max_attempts):
        candidate = f"{name}-{attempt}"
        if not exists(join_src(folder, f"{candidate}{suffix}", extension)):
            return {**parts, "name": candidate}
    return {}


def normalize_image_path(src: Optional[str]) -> str:
    """
    Normalize an image src from external content to the stored format.

    Content paths: "/hero-butterfly-XXL.jpg" or "images/hero-butterfly-XXL.jpg"
    Stored paths:  "images/hero-butterfly-XXL.jpg"
    """
    if not src:
        return ""
    normalized = src.strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.lstrip("/")
    if not normalized:
        return ""
    if not normalized.startswith(f"{DEFAULT_IMAGE_FOLDER}/"):
        normalized = f"{DEFAULT_IMAGE_FOLDER}/{normalized}"
    return normalized
