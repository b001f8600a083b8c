from __future__ import annotations

import logging
import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple

from PIL import ExifTags, Image, UnidentifiedImageError

from ..models import DevicePhoto
from ..services.hashing import guess_mime_type

logger = logging.getLogger("photo_sync.adapters.filesystem")

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".heic", ".heif", ".webp", ".gif", ".mp4", ".mov"}

DATETIME_ORIGINAL_TAG = next(
    (tag for tag, name in ExifTags.TAGS.items() if name == "DateTimeOriginal"), None
)
EXIF_IFD_POINTER = 0x8769


class FileSystemPhotoLibrary:
    """DeviceLibrary over a directory tree; photo ids are paths relative to the root."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def get_recent_photos(self, max_count: int) -> List[DevicePhoto]:
        if not self.root.is_dir():
            logger.warning({"event": "library.root_missing", "root": str(self.root)})
            return []

        photos = [
            self._describe(path)
            for path in self.root.rglob("*")
            if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS
        ]
        photos.sort(key=lambda photo: photo.taken_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return photos[:max_count]

    def open_content_stream(self, photo_id: str) -> BinaryIO:
        return self._path(photo_id).open("rb")

    def get_size(self, photo_id: str) -> int:
        return self._path(photo_id).stat().st_size

    def get_mime_type(self, photo_id: str) -> str:
        guessed, _ = mimetypes.guess_type(photo_id)
        return guessed or guess_mime_type(photo_id)

    def get_dimensions(self, photo_id: str) -> Optional[Tuple[int, int]]:
        try:
            with Image.open(self._path(photo_id)) as image:
                return image.size
        except UnidentifiedImageError:
            return None

    def compute_hash(self, photo_id: str) -> Optional[str]:
        # No platform hash for plain files; the collector hashes the content.
        return None

    def _path(self, photo_id: str) -> Path:
        path = (self.root / photo_id).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Photo id escapes the library root: {photo_id}")
        return path

    def _describe(self, path: Path) -> DevicePhoto:
        return DevicePhoto(
            id=path.relative_to(self.root).as_posix(),
            display_name=path.name,
            taken_at=self._taken_at(path),
        )

    def _taken_at(self, path: Path) -> datetime:
        try:
            with Image.open(path) as image:
                exif = image.getexif()
                raw_value = exif.get(DATETIME_ORIGINAL_TAG) or exif.get_ifd(EXIF_IFD_POINTER).get(DATETIME_ORIGINAL_TAG)
        except (OSError, UnidentifiedImageError):
            raw_value = None

        if raw_value:
            parsed = self._parse_exif_datetime(str(raw_value))
            if parsed is not None:
                return parsed
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    @staticmethod
    def _parse_exif_datetime(raw: str) -> Optional[datetime]:
        for pattern in ("%Y:%m:%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
            try:
                return datetime.strptime(raw, pattern).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
        return None
