"""Validation of incoming files: type, per-file size and per-session count."""
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Iterable, Optional

from compresslimit.compression.models import Asset, DocumentAsset, MediaKind, RasterAsset
from compresslimit.config import ALLOWED_CONTENT_TYPES, MAX_FILE_SIZE_BYTES, MAX_FILES

logger = logging.getLogger("compresslimit.intake")

# Browsers send these for files they cannot classify
_GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


@dataclass
class IncomingFile:
    name: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class Rejection:
    name: str
    reason: str

    def to_dict(self) -> dict:
        return {"filename": self.name, "reason": self.reason}


@dataclass
class IntakeResult:
    assets: list[Asset] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)


def detect_media_kind(name: str, content_type: Optional[str]) -> Optional[MediaKind]:
    """Declared content type wins; the extension is used only when the type is missing or generic."""
    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype == "image/jpg":
        ctype = "image/jpeg"
    if ctype not in _GENERIC_TYPES:
        return MediaKind(ctype) if ctype in ALLOWED_CONTENT_TYPES else None
    ext = PurePath(name).suffix.lower()
    for allowed, extensions in ALLOWED_CONTENT_TYPES.items():
        if ext in extensions:
            return MediaKind(allowed)
    return None


def to_asset(name: str, data: bytes, kind: MediaKind) -> Asset:
    if kind == MediaKind.PDF:
        return DocumentAsset(name=name, data=data)
    return RasterAsset(name=name, data=data, media_kind=kind)


def accept_files(
    files: Iterable[IncomingFile],
    current_count: int = 0,
    max_files: int = MAX_FILES,
    max_bytes: int = MAX_FILE_SIZE_BYTES,
) -> IntakeResult:
    result = IntakeResult()
    remaining = max_files - current_count
    files = list(files)
    if remaining <= 0:
        result.rejections = [Rejection(f.name, f"Maximum {max_files} files allowed.") for f in files]
        return result

    for f in files[:remaining]:
        kind = detect_media_kind(f.name, f.content_type)
        if kind is None:
            result.rejections.append(Rejection(f.name, "unsupported type. Only JPG, PNG, PDF."))
            continue
        if len(f.data) > max_bytes:
            limit_mb = max_bytes // (1024 * 1024)
            result.rejections.append(Rejection(f.name, f"exceeds {limit_mb} MB limit."))
            continue
        result.assets.append(to_asset(f.name, f.data, kind))

    for f in files[remaining:]:
        result.rejections.append(Rejection(f.name, f"Only {remaining} more file(s) accepted (max {max_files})."))
    if result.rejections:
        logger.info("Rejected %d of %d file(s)", len(result.rejections), len(files))
    return result
