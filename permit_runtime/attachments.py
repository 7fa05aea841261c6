"""
Attachment Store: permit files on the local filesystem.

Layout: <root>/<permit_id>/<stored file name>. Stored names are
generated (uuid + original extension) so uploads never collide and a
client-chosen name never becomes a path.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path, PurePath

from permit_kernel.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


class AttachmentStore:

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _permit_dir(self, permit_id: int) -> Path:
        return self._root / str(int(permit_id))

    def path_for(self, permit_id: int, file_name: str) -> Path:
        name = PurePath(file_name).name
        if not name or name != file_name:
            raise NotFoundError("attachment file", file_name)
        return self._permit_dir(permit_id) / name

    def save(self, permit_id: int, original_file_name: str, data: bytes) -> str:
        """Write the file and return its stored name."""
        suffix = PurePath(original_file_name or "").suffix.lower()
        file_name = f"{uuid.uuid4().hex}{suffix}"
        target = self._permit_dir(permit_id) / file_name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            logger.error("Cannot store attachment for work permit %s", permit_id, exc_info=True)
            raise StorageError(f"Cannot store attachment: {exc}") from exc
        return file_name

    def read(self, permit_id: int, file_name: str) -> bytes:
        path = self.path_for(permit_id, file_name)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("attachment file", file_name) from exc
        except OSError as exc:
            logger.error("Cannot read attachment %s", path, exc_info=True)
            raise StorageError(f"Cannot read attachment: {exc}") from exc

    def delete(self, permit_id: int, file_name: str) -> None:
        """Remove one file. A file that is already gone is not an error."""
        path = self.path_for(permit_id, file_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Cannot delete attachment: {exc}") from exc

    def delete_all(self, permit_id: int) -> None:
        directory = self._permit_dir(permit_id)
        if not directory.exists():
            return
        try:
            shutil.rmtree(directory)
        except OSError as exc:
            raise StorageError(f"Cannot delete attachments: {exc}") from exc
