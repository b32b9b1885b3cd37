"""Zip packaging for downloading several compressed files at once."""
import io
import logging
import zipfile
from pathlib import PurePath

logger = logging.getLogger("compresslimit.archive")

ARCHIVE_NAME = "compressed-files.zip"


def _sanitize_name(name: str) -> str:
    """Safe entry name for zip (no path separators, no empty)."""
    s = "".join(c for c in PurePath(name).name if c.isalnum() or c in "._- ").strip() or "file"
    return s[:128]


def _unique_name(name: str, seen: set[str]) -> str:
    if name not in seen:
        return name
    path = PurePath(name)
    n = 2
    while True:
        candidate = f"{path.stem} ({n}){path.suffix}"
        if candidate not in seen:
            return candidate
        n += 1


def build_zip(entries: list[tuple[str, bytes]]) -> bytes:
    """Pack (filename, data) pairs. Outputs are already compressed, so entries are stored as-is."""
    buf = io.BytesIO()
    seen: set[str] = set()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_STORED) as zf:
        for name, data in entries:
            arcname = _unique_name(_sanitize_name(name), seen)
            seen.add(arcname)
            zf.writestr(arcname, data)
    logger.info("Created zip with %d file(s)", len(entries))
    return buf.getvalue()
