"""
Helpers for storing uploaded Vista workbooks that are handed to the worker.
"""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "vista_uploads"
WORKBOOK_EXTENSIONS: tuple[str, ...] = ("xlsx", "xlsm")


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the workbook upload directory.
    """

    configured = app.config.get("RECONCILE_UPLOAD_DIR")
    if not configured:
        upload_dir = Path(app.instance_path) / DEFAULT_UPLOAD_SUBDIR
    else:
        upload_dir = Path(configured)
        if not upload_dir.is_absolute():
            upload_dir = Path(app.instance_path) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_workbook(filename: str | None) -> bool:
    if not filename or "." not in filename:
        return False
    return filename.rsplit(".", 1)[1].lower() in WORKBOOK_EXTENSIONS


def persist_upload(file_storage: FileStorage, app) -> Path:
    """
    Save the uploaded workbook under a UUID name and return its path.
    """

    original_name = secure_filename(file_storage.filename or "")
    extension = Path(original_name).suffix.lower() or ".xlsx"
    target_path = resolve_upload_directory(app) / f"{uuid4().hex}{extension}"
    file_storage.save(target_path)
    current_app.logger.debug("Vista upload persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """
    Remove a stored upload, logging but ignoring filesystem errors.
    """

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove Vista upload %s: %s", path, exc)


__all__ = [
    "WORKBOOK_EXTENSIONS",
    "allowed_workbook",
    "cleanup_upload",
    "persist_upload",
    "resolve_upload_directory",
]
