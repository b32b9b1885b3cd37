"""Thumbnail handles for compressed images. Each handle is owned by exactly one task."""
import io
import logging
import threading
import uuid
from typing import Optional

from PIL import Image

from compresslimit.config import PREVIEW_MAX_SIDE

logger = logging.getLogger("compresslimit.previews")


class PreviewRegistry:
    def __init__(self, max_side: int = PREVIEW_MAX_SIDE):
        self.max_side = max_side
        self._previews: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.released_count = 0

    @property
    def live_count(self) -> int:
        return len(self._previews)

    def _thumbnail(self, data: bytes) -> bytes:
        with Image.open(io.BytesIO(data)) as img:
            thumb = img.convert("RGB")
        thumb.thumbnail((self.max_side, self.max_side), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        thumb.save(buf, format="JPEG", quality=80)
        return buf.getvalue()

    def mint(self, data: bytes) -> str:
        """Decode an image output and keep a thumbnail under a new handle."""
        thumb = self._thumbnail(data)
        handle = uuid.uuid4().hex
        with self._lock:
            self._previews[handle] = thumb
        return handle

    def get(self, handle: str) -> Optional[bytes]:
        with self._lock:
            return self._previews.get(handle)

    def release(self, handle: str) -> bool:
        with self._lock:
            if self._previews.pop(handle, None) is None:
                logger.warning("Preview %s already released or unknown", handle)
                return False
            self.released_count += 1
            return True
