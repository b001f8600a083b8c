from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import or_, select

from ..models import CachedPhoto, utc_now
from .db import Database
from .models import CachedPhotoRow


class SqlPhotoCache:
    """Local photo cache recording which device photos are already on the server."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def get_cached_photos(self) -> List[CachedPhoto]:
        with self._db.session() as session:
            rows = session.scalars(select(CachedPhotoRow))
            return [CachedPhoto(id=row.id, hash=row.hash, is_synced=row.is_synced) for row in rows]

    def save_photos(self, photos: Iterable[CachedPhoto]) -> None:
        with self._db.session() as session:
            for photo in photos:
                session.merge(
                    CachedPhotoRow(
                        id=photo.id,
                        hash=photo.hash,
                        is_synced=photo.is_synced,
                        synced_at=utc_now() if photo.is_synced else None,
                    )
                )

    def mark_synced(self, photo_id: str, content_hash: Optional[str]) -> bool:
        """Flag entries matching the photo id or its content hash as synced.

        The photo itself always ends up with a synced entry. Returns whether
        any entry existed before.
        """
        conditions = [CachedPhotoRow.id == photo_id]
        if content_hash:
            conditions.append(CachedPhotoRow.hash == content_hash)

        synced_at = utc_now()
        with self._db.session() as session:
            rows = list(session.scalars(select(CachedPhotoRow).where(or_(*conditions))))
            for row in rows:
                row.is_synced = True
                row.synced_at = synced_at
                if content_hash and not row.hash:
                    row.hash = content_hash

            if not any(row.id == photo_id for row in rows):
                session.add(CachedPhotoRow(id=photo_id, hash=content_hash, is_synced=True, synced_at=synced_at))
        return bool(rows)
