"""
Attachment blob store.

Holds uploaded images and files as BLOBs keyed by generated id, apart from
the post collections. Posts only carry small descriptors ({id, name, mime,
thumb}) so the serialized collections stay small.

Blobs are never deleted one by one. sweep() reclaims blobs that no post,
comment or reply references any more.
"""

import base64
import io
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import unquote_to_bytes

from PIL import Image, UnidentifiedImageError

from config import attachment_config
from models.post import Attachment, now_ms
from storage.database import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"


@dataclass
class Upload:
    """A file picked in the composer, before it is persisted."""
    name: str
    data: bytes
    mime: str = DEFAULT_MIME


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """
    Decode a data: URL.

    Args:
        data_url: e.g. "data:image/png;base64,iVBOR..."

    Returns:
        Tuple of (payload bytes, mime type)

    Raises:
        ValueError: If the string is not a data URL
    """
    if not isinstance(data_url, str) or not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("not a data URL")

    header, payload = data_url[5:].split(",", 1)
    params = header.split(";")
    mime = params[0] or DEFAULT_MIME
    if "base64" in params[1:]:
        return base64.b64decode(payload), mime
    return unquote_to_bytes(payload), mime


def make_thumbnail(
    data: bytes,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    quality: Optional[int] = None
) -> Optional[str]:
    """
    Render a small JPEG preview as a data URL.

    Images are only ever shrunk, never enlarged.

    Returns:
        "data:image/jpeg;base64,..." or None if the bytes are not an image
    """
    max_width = max_width or attachment_config.thumb_max_width
    max_height = max_height or attachment_config.thumb_max_height
    quality = quality or attachment_config.thumb_quality

    try:
        with Image.open(io.BytesIO(data)) as img:
            img = img.convert("RGB")
            img.thumbnail((max_width, max_height))
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not build thumbnail: {e}")
        return None

    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class AttachmentStore(SQLiteStore):
    """
    SQLite BLOB store for attachment content.

    Attributes:
        db_path: Path to the SQLite database file (shared with LocalStore)
    """

    def _init_database(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    id TEXT PRIMARY KEY,
                    mime TEXT,
                    data BLOB NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    def put(self, blob_id: str, blob: bytes, mime: str = DEFAULT_MIME):
        """Store a blob. Writing the same id again replaces it."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO blobs (id, mime, data) VALUES (?, ?, ?)",
                (blob_id, mime, bytes(blob))
            )

    def get(self, blob_id: str) -> Optional[bytes]:
        """Return the blob, or None if it was never stored here."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT data FROM blobs WHERE id = ?", (blob_id,)).fetchone()
            return bytes(row["data"]) if row else None

    def ids(self) -> List[str]:
        with self._get_connection() as conn:
            return [r["id"] for r in conn.execute("SELECT id FROM blobs").fetchall()]

    @staticmethod
    def new_id(kind: str) -> str:
        """Generate a never-reused blob key ("att_img_..." / "att_file_...")."""
        return f"att_{kind}_{now_ms()}_{uuid.uuid4().hex[:10]}"

    def persist_uploads(
        self,
        images: Iterable[Union[Upload, str]] = (),
        files: Iterable[Union[Upload, str]] = ()
    ) -> Tuple[List[Attachment], List[Attachment]]:
        """
        Store composer uploads and return their descriptors.

        Args:
            images: Uploads or data URLs; each gets a thumbnail
            files: Uploads or data URLs

        Returns:
            Tuple of (image descriptors, file descriptors)
        """
        image_descs = []
        for upload in images:
            upload = self._as_upload(upload, "image.jpg")
            blob_id = self.new_id("img")
            mime = upload.mime or "image/jpeg"
            self.put(blob_id, upload.data, mime)
            image_descs.append(Attachment(
                id=blob_id,
                name=upload.name or "image.jpg",
                mime=mime,
                thumb=make_thumbnail(upload.data),
            ))

        file_descs = []
        for upload in files:
            upload = self._as_upload(upload, "file")
            blob_id = self.new_id("file")
            mime = upload.mime or DEFAULT_MIME
            self.put(blob_id, upload.data, mime)
            file_descs.append(Attachment(id=blob_id, name=upload.name or "file", mime=mime))

        return image_descs, file_descs

    @staticmethod
    def _as_upload(item: Union[Upload, str], default_name: str) -> Upload:
        if isinstance(item, Upload):
            return item
        data, mime = decode_data_url(item)
        return Upload(name=default_name, data=data, mime=mime)

    def sweep(self, referenced_ids: Iterable[str]) -> int:
        """
        Remove blobs not in `referenced_ids`.

        Returns:
            Number of blobs removed
        """
        keep = set(referenced_ids)
        orphans = [blob_id for blob_id in self.ids() if blob_id not in keep]
        if not orphans:
            return 0

        with self._get_connection() as conn:
            placeholders = ",".join("?" * len(orphans))
            conn.execute(f"DELETE FROM blobs WHERE id IN ({placeholders})", orphans)

        logger.info(f"Reclaimed {len(orphans)} unreferenced attachments")
        return len(orphans)
