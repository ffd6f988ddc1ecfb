"""Local file storage for evidence photos."""

import shutil
import logging
from typing import Dict, Any, List
from pathlib import Path, PurePosixPath

from ..utils.errors import StoreError

logger = logging.getLogger(__name__)


class FileStorage:
    """
    Local file storage manager for evidence photos.

    Photos are stored per report id so a later repair can be compared with
    the photo of the hazard it claims to fix. An image ref is the photo's
    path relative to the uploads directory, e.g. ``"abc123/photos/evidence.jpg"``.
    """

    def __init__(self, uploads_dir: str = "data/uploads"):
        """
        Initialize FileStorage.

        Args:
            uploads_dir: Directory for evidence photos
        """
        self.uploads_dir = Path(uploads_dir)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initialized FileStorage: uploads_dir={self.uploads_dir}")

    def _resolve(self, image_ref: str) -> Path:
        """Map an image ref to a path, refusing refs that escape the uploads dir."""
        relative = PurePosixPath(image_ref)
        if relative.is_absolute() or ".." in relative.parts:
            raise StoreError.photo_not_found(image_ref)
        return self.uploads_dir.joinpath(*relative.parts)

    def save_photo(
        self,
        report_id: str,
        filename: str,
        content: bytes,
        category: str = "photos"
    ) -> str:
        """
        Save an evidence photo for a report.

        Args:
            report_id: Report the photo belongs to
            filename: Original filename (only its final component is kept)
            content: File content as bytes
            category: Sub-directory under the report

        Returns:
            Image ref for the stored photo

        Raises:
            StoreError: If the file cannot be written
        """
        safe_name = Path(filename).name or "evidence.jpg"
        image_ref = f"{report_id}/{category}/{safe_name}"
        file_path = self._resolve(image_ref)

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'wb') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to save photo {safe_name} for {report_id}: {str(e)}")
            raise StoreError.unavailable("save_photo", e) from e

        logger.info(f"Saved photo: {file_path} ({len(content)} bytes)")
        return image_ref

    def load_photo(self, image_ref: str) -> bytes:
        """
        Load a stored evidence photo.

        Raises:
            StoreError: If the photo does not exist or cannot be read
        """
        file_path = self._resolve(image_ref)

        if not file_path.exists():
            raise StoreError.photo_not_found(image_ref)

        try:
            with open(file_path, 'rb') as f:
                content = f.read()
        except OSError as e:
            logger.error(f"Failed to load photo {image_ref}: {str(e)}")
            raise StoreError.unavailable("load_photo", e) from e

        logger.debug(f"Loaded photo: {file_path} ({len(content)} bytes)")
        return content

    def photo_exists(self, image_ref: str) -> bool:
        try:
            return self._resolve(image_ref).exists()
        except StoreError:
            return False

    def list_photos(self, report_id: str) -> List[str]:
        report_dir = self.uploads_dir / report_id
        if not report_dir.exists():
            return []
        return sorted(
            path.relative_to(self.uploads_dir).as_posix()
            for path in report_dir.rglob("*")
            if path.is_file()
        )

    def delete_report_uploads(self, report_id: str) -> bool:
        """
        Delete every photo stored for a report.

        Only used to roll back a submission whose report never got stored.

        Returns:
            True if anything was deleted
        """
        report_dir = self.uploads_dir / report_id

        if not report_dir.exists():
            return False

        try:
            shutil.rmtree(report_dir)
            logger.info(f"Deleted uploads for report: {report_id}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete uploads for {report_id}: {str(e)}")
            return False

    def get_storage_stats(self) -> Dict[str, Any]:
        files = [path for path in self.uploads_dir.rglob("*") if path.is_file()]
        return {
            "uploads_dir": str(self.uploads_dir),
            "exists": self.uploads_dir.exists(),
            "file_count": len(files),
            "size_bytes": sum(path.stat().st_size for path in files),
        }
