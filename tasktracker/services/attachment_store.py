"""
Completion evidence attachments.

The engine stores opaque handles only; this module turns uploaded files
into handles.  ``LocalAttachmentStore`` writes beneath ``UPLOAD_FOLDER``
and returns the path relative to it, e.g. ``completion-3f9a1c0b2d4e-report.pdf``.
"""

from __future__ import annotations

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from tasktracker.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTACHMENTS = 5


class AttachmentStore:
    """Base store; subclasses override ``save``."""

    def save(self, file) -> str:
        raise NotImplementedError

    def save_all(self, files, max_count: int = DEFAULT_MAX_ATTACHMENTS) -> list[str]:
        """Save every non-empty upload and return their handles in order.

        All or nothing: if one upload fails, the ones already written are
        discarded before the error propagates.
        """
        files = [f for f in files if f and f.filename]
        if len(files) > max_count:
            raise ValidationError(
                f"At most {max_count} attachments per submission",
                details={"attachments": len(files), "max_attachments": max_count},
            )
        saved = []
        try:
            for f in files:
                saved.append(self.save(f))
        except Exception:
            self.discard(saved)
            raise
        return saved

    def discard(self, handles) -> None:
        """Remove stored files whose submission was refused."""
        return None


class LocalAttachmentStore(AttachmentStore):
    """Writes uploads to a local directory."""

    def __init__(self, root: str):
        self.root = root

    @classmethod
    def from_app(cls, app=None):
        app = app or current_app
        return cls(app.config["UPLOAD_FOLDER"])

    def save(self, file) -> str:
        name = secure_filename(file.filename or "")
        if not name:
            raise ValidationError(
                "Attachment has no usable filename",
                details={"filename": file.filename},
            )
        handle = f"completion-{uuid.uuid4().hex[:12]}-{name}"
        os.makedirs(self.root, exist_ok=True)
        file.save(os.path.join(self.root, handle))
        logger.debug("Stored attachment %s", handle)
        return handle

    def discard(self, handles) -> None:
        for handle in handles:
            path = os.path.join(self.root, handle)
            try:
                os.remove(path)
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove orphaned attachment %s", handle, exc_info=True)
