"""Shared fixtures: synthetic images and PDFs, fake encoders and recording sinks."""
import io
import random

import pikepdf
import pytest
from PIL import Image

from compresslimit import config as app_config
from compresslimit import db
from compresslimit.analytics import AnalyticsSink
from compresslimit.compression.models import DocumentAsset, MediaKind, RasterAsset


def noise_image(width: int, height: int, seed: int = 0, mode: str = "RGB") -> Image.Image:
    """Random pixels: the worst case for JPEG, so sizes are large and quality-sensitive."""
    rng = random.Random(seed)
    return Image.frombytes(mode, (width, height), rng.randbytes(width * height * len(mode)))


def encode(img: Image.Image, fmt: str, **kwargs) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def jpeg_asset(width=200, height=200, name="photo.jpg", quality=95, seed=0) -> RasterAsset:
    data = encode(noise_image(width, height, seed), "JPEG", quality=quality)
    return RasterAsset(name=name, data=data, media_kind=MediaKind.JPEG)


def png_asset(width=200, height=200, name="shot.png", mode="RGB", seed=0) -> RasterAsset:
    data = encode(noise_image(width, height, seed, mode), "PNG")
    return RasterAsset(name=name, data=data, media_kind=MediaKind.PNG)


def pdf_bytes(pages=1, title="Quarterly report", encryption=None, xmp=False) -> bytes:
    pdf = pikepdf.new()
    for _ in range(pages):
        pdf.add_blank_page(page_size=(612, 792))
    pdf.docinfo[pikepdf.Name.Title] = title
    pdf.docinfo[pikepdf.Name.Author] = "Jane Doe"
    pdf.docinfo[pikepdf.Name.Producer] = "Some Producer 1.0"
    pdf.docinfo[pikepdf.Name.CreationDate] = "D:20240101120000Z"
    if xmp:
        with pdf.open_metadata(set_pikepdf_as_editor=False) as meta:
            meta["dc:title"] = title
    buf = io.BytesIO()
    if encryption is not None:
        pdf.save(buf, encryption=encryption)
    else:
        pdf.save(buf)
    return buf.getvalue()


def pdf_asset(name="report.pdf", **kwargs) -> DocumentAsset:
    return DocumentAsset(name=name, data=pdf_bytes(**kwargs))


class SizeModelEncoder:
    """Deterministic stand-in for JPEG encoding: size grows with pixels and quality."""

    def __init__(self, bytes_per_pixel=1.0, floor=0.5):
        self.bytes_per_pixel = bytes_per_pixel
        self.floor = floor
        self.calls = []

    def size_for(self, dims, quality) -> int:
        w, h = dims
        return int(w * h * self.bytes_per_pixel * (self.floor + quality))

    def __call__(self, img, kind, quality):
        self.calls.append((img.size, kind, quality))
        return b"\0" * self.size_for(img.size, quality)


class RecordingAnalytics(AnalyticsSink):
    def __init__(self):
        self.events = []

    def file_accepted(self, media_kind, size_bytes):
        self.events.append(("file_accepted", media_kind, size_bytes))

    def compression_started(self, media_kind, original_bytes, target_bytes):
        self.events.append(("compression_started", media_kind, target_bytes))

    def compression_succeeded(self, media_kind, original_bytes, compressed_bytes, reduction_pct, within_target):
        self.events.append(("compression_succeeded", media_kind, within_target))

    def compression_failed(self, media_kind, error_message):
        self.events.append(("compression_failed", media_kind, error_message))

    def file_downloaded(self, media_kind, compressed_bytes, reduction_pct):
        self.events.append(("file_downloaded", media_kind, compressed_bytes))

    def recompress_requested(self):
        self.events.append(("recompress_requested",))

    def file_removed(self):
        self.events.append(("file_removed",))

    def names(self):
        return [e[0] for e in self.events]


@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    """Point the database layer at a throwaway SQLite file."""
    monkeypatch.setattr(app_config, "DATABASE_URL", f"sqlite:///{tmp_path / 'events.db'}")
    db.reset_engine()
    assert db.init_db()
    yield db
    db.reset_engine()
