# core/ingestion.py
"""Turns raw bytes plus metadata into FileRecords, with an inline preview."""
import base64
import io
import logging
import uuid
from typing import Optional

from PIL import Image, ImageOps

from core.directory_handle import guess_mime_type
from core.entity_store import now_millis
from core.models import FileRecord, Origin

logger = logging.getLogger(__name__)

PREVIEWABLE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml")


def _data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class FileIngestor:
    """Builds FileRecords for manual uploads and synced directory entries."""

    def __init__(self, preview_size: int = 256):
        self.preview_size = preview_size

    def make_preview(self, name: str, data: bytes, mime_type: str) -> Optional[str]:
        """PNG thumbnail data URL for raster images, the raw SVG for vectors, else None."""
        if not mime_type.startswith(PREVIEWABLE_TYPES):
            return None
        if mime_type.startswith("image/svg+xml"):
            return _data_url("image/svg+xml", data)
        try:
            with Image.open(io.BytesIO(data)) as img:
                img = ImageOps.exif_transpose(img)
                if img.mode not in ("RGB", "RGBA"):
                    img = img.convert("RGBA")
                img.thumbnail((self.preview_size, self.preview_size), Image.Resampling.LANCZOS)
                out = io.BytesIO()
                img.save(out, "PNG")
        except Exception as e:
            # why: damaged files surface as SyntaxError, EOFError or struct.error; a bad image only loses its preview
            logger.warning(f"Could not build preview for {name}: {e}")
            return None
        return _data_url("image/png", out.getvalue())

    def ingest(self, name: str, data: bytes, mime_type: Optional[str] = None,
               size: Optional[int] = None, last_modified: Optional[int] = None,
               origin: Optional[Origin] = None, source_path: Optional[str] = None) -> FileRecord:
        mime = mime_type or guess_mime_type(name)
        mtime = last_modified if last_modified is not None else now_millis()
        return FileRecord(
            id=str(uuid.uuid4()),
            name=name,
            mime_type=mime,
            size_bytes=size if size is not None else len(data),
            last_modified=mtime,
            origin=origin or Origin.manual(),
            preview=self.make_preview(name, data, mime),
            source_path=source_path,
            source_mtime=mtime,
        )
