"""Local staging of uploaded import files."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StagedUpload:
    path: Path
    size: int
    sha256: str


def save_upload(
    file_obj: BinaryIO, original_name: str | None, uploads_dir: str | Path
) -> StagedUpload:
    """Copy an uploaded CSV under ``uploads_dir``, hashing it on the way."""
    directory = Path(uploads_dir).resolve()
    directory.mkdir(parents=True, exist_ok=True)

    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = directory / f"{uuid.uuid4()}{suffix}"

    digest = hashlib.sha256()
    size = 0
    file_obj.seek(0)
    with target_path.open("wb") as destination:
        for chunk in iter(lambda: file_obj.read(CHUNK_SIZE), b""):
            digest.update(chunk)
            destination.write(chunk)
            size += len(chunk)

    logger.info(f"Staged upload {original_name!r} at {target_path} ({size} bytes)")
    return StagedUpload(path=target_path, size=size, sha256=digest.hexdigest())


def file_sha256(path: str | Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def upload_exists(path: str | Path | None) -> bool:
    return bool(path) and Path(path).is_file()


def delete_upload(path: str | Path | None) -> None:
    """Cleanup staged files when a job no longer needs them."""
    if not path:
        return
    target = Path(path).resolve()
    try:
        target.unlink(missing_ok=True)
        logger.info(f"Deleted staged upload {target}")
    except OSError as e:
        # Deletion errors are left for the recovery script to retry.
        logger.warning(f"Could not delete staged upload {target}: {e}")
