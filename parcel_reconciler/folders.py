"""
On-disk parcel folders.

Layout:
    <root>/<folder name>/
        Maps/  Vesting Deed/  Easements/  Chain/  Taxes/  Miscellaneous/

The folder name is the APN with anything outside [A-Za-z0-9_-] replaced
by "_". Records without an APN fall back to their id.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from .exceptions import PlacementFailure
from .models import ParcelRecord

logger = logging.getLogger(__name__)

CATEGORY_FOLDERS: tuple[str, ...] = (
    "Maps",
    "Vesting Deed",
    "Easements",
    "Chain",
    "Taxes",
    "Miscellaneous",
)

TAXES = "Taxes"

DEFAULT_PARCELS_ROOT = Path.home() / "Documents" / "TitleCRM" / "Parcels"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


def safe_name(value: str) -> str:
    """Make an APN usable as a folder or file name component."""
    return _UNSAFE_CHARS.sub("_", value)


def create_parcel_folder(root: str | Path, record: ParcelRecord) -> Path:
    """Create the parcel folder with every category subfolder.

    Raises:
        OSError: when the folder tree cannot be created.
    """
    folder = Path(root) / (safe_name(record.apn) if record.apn else record.id)
    for category in CATEGORY_FOLDERS:
        (folder / category).mkdir(parents=True, exist_ok=True)
    return folder


def place(
    source_path: str | Path,
    destination_folder: str | Path,
    category: str,
    file_name: str,
) -> Path:
    """Copy a document into ``destination_folder/category/file_name``.

    Missing path segments are created; an existing file of the same name
    is overwritten.

    Raises:
        PlacementFailure: wrapping the underlying I/O error.
    """
    target_dir = Path(destination_folder) / category
    target = target_dir / file_name
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, target)
    except OSError as exc:
        raise PlacementFailure(
            f"Could not place '{file_name}' in {target_dir}: {exc}",
            details={
                "source": str(source_path),
                "destination": str(target),
                "error": repr(exc),
            },
        ) from exc
    logger.debug("Placed %s → %s", source_path, target)
    return target


def list_parcel_files(folder: str | Path) -> dict[str, list[Path]]:
    """Non-hidden files per category, creating missing category folders."""
    result: dict[str, list[Path]] = {}
    for category in CATEGORY_FOLDERS:
        path = Path(folder) / category
        try:
            path.mkdir(parents=True, exist_ok=True)
            result[category] = sorted(
                p for p in path.iterdir() if p.is_file() and not p.name.startswith(".")
            )
        except OSError as exc:
            logger.warning("Could not list %s: %s", path, exc)
            result[category] = []
    return result


def delete_parcel_folder(folder: str | Path) -> None:
    """Remove a parcel folder and everything in it. Missing folders are fine."""
    path = Path(folder)
    if path.exists():
        shutil.rmtree(path)
