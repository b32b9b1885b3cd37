"""Target-size search for raster images: quality bisection, then dimension fallback."""
import io
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from compresslimit.compression.models import (
    BUDGET_UNREACHABLE,
    LOAD_IMAGE_FAILED,
    CompressionError,
    CompressionResult,
    MediaKind,
    ProgressEvent,
    ProgressSink,
    RasterAsset,
)
from compresslimit.sizes import format_size

logger = logging.getLogger("compresslimit.image")

MAX_DIMENSION = 4096
MIN_QUALITY = 0.05
MAX_QUALITY = 1.0
MAX_ITERATIONS = 14
# Stop improving once the best fit is within 5% of the budget
SLACK_RATIO = 0.05
CONVERGED_WIDTH = 0.005
FALLBACK_SCALES = tuple(step / 10 for step in range(9, 1, -1))  # 0.9 .. 0.2

# Progress bands: quality search reports 10-70, dimension fallback 72-100
SEARCH_START, SEARCH_SPAN = 10, 60
FALLBACK_START, FALLBACK_SPAN = 72, 28

Encoder = Callable[[Image.Image, MediaKind, float], bytes]


def to_pil_quality(quality: float) -> int:
    """Map a 0-1 quality to Pillow's 1-100 JPEG scale."""
    return max(1, min(100, int(round(quality * 100))))


def output_kind(kind: MediaKind) -> MediaKind:
    """PNG is lossless and cannot hit an arbitrary size, so it is re-encoded as JPEG."""
    if kind == MediaKind.PNG:
        return MediaKind.JPEG
    return kind


def encode_image(img: Image.Image, kind: MediaKind, quality: float) -> bytes:
    buf = io.BytesIO()
    if kind == MediaKind.JPEG:
        img.save(buf, format="JPEG", quality=to_pil_quality(quality), optimize=True)
    elif kind == MediaKind.PNG:
        img.save(buf, format="PNG", optimize=True)
    else:
        raise ValueError(f"Not an image kind: {kind.value}")
    data = buf.getvalue()
    if not data:
        raise OSError(f"{kind.value} encoder produced no output")
    return data


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten transparency onto white; JPEG has no alpha channel."""
    if img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, (255, 255, 255))
        canvas.paste(rgba, mask=rgba.getchannel("A"))
        return canvas
    return img.convert("RGB")


def load_image(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            return _to_rgb(ImageOps.exif_transpose(src))
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning("Could not decode image: %s", e)
        raise CompressionError(LOAD_IMAGE_FAILED) from e


def scale_image(img: Image.Image, factor: float) -> Image.Image:
    w, h = img.size
    new_w = max(1, int(round(w * factor)))
    new_h = max(1, int(round(h * factor)))
    return img.resize((new_w, new_h), Image.Resampling.LANCZOS)


def clamp_dimensions(img: Image.Image, max_dimension: int = MAX_DIMENSION) -> Image.Image:
    """Downscale so the larger side equals max_dimension, keeping aspect ratio."""
    w, h = img.size
    if w <= max_dimension and h <= max_dimension:
        return img
    return scale_image(img, min(max_dimension / w, max_dimension / h))


@dataclass
class SearchState:
    """Bisection bounds over encoding quality.

    lower <= midpoint <= upper holds after every step, and ``best`` is only
    ever an output that fit the budget.
    """

    lower: float = MIN_QUALITY
    upper: float = MAX_QUALITY
    midpoint: Optional[float] = None
    best: Optional[bytes] = None

    @property
    def width(self) -> float:
        return self.upper - self.lower

    @property
    def converged(self) -> bool:
        return self.width < CONVERGED_WIDTH

    def next_midpoint(self) -> float:
        self.midpoint = (self.lower + self.upper) / 2
        return self.midpoint

    def record(self, data: bytes, budget: int) -> bool:
        if self.midpoint is None:
            raise RuntimeError("record() called before next_midpoint()")
        fits = len(data) <= budget
        if fits:
            self.best = data
            self.lower = self.midpoint
        else:
            self.upper = self.midpoint
        return fits

    def close_enough(self, budget: int) -> bool:
        return self.best is not None and budget - len(self.best) < budget * SLACK_RATIO


def _ignore(event: ProgressEvent) -> None:
    pass


class ImageSearchEngine:
    """Finds the highest JPEG quality (then the largest scale) that fits a byte budget."""

    def __init__(
        self,
        encoder: Encoder = encode_image,
        max_dimension: int = MAX_DIMENSION,
        max_iterations: int = MAX_ITERATIONS,
    ):
        self.encoder = encoder
        self.max_dimension = max_dimension
        self.max_iterations = max_iterations

    def compress(
        self,
        asset: RasterAsset,
        budget: int,
        progress: Optional[ProgressSink] = None,
    ) -> CompressionResult:
        if budget <= 0:
            raise ValueError(f"Budget must be positive, got {budget}")
        emit = progress or _ignore
        canvas = clamp_dimensions(load_image(asset.data), self.max_dimension)
        kind = output_kind(asset.media_kind)

        state = SearchState()
        self._search_quality(canvas, kind, budget, state, emit)
        if state.best is None or len(state.best) > budget:
            self._scale_down(canvas, kind, budget, state, emit)

        if state.best is None:
            logger.info("%s: no candidate fits %d bytes", asset.name, budget)
            raise CompressionError(BUDGET_UNREACHABLE)

        logger.info("%s: %s -> %s (budget %s)", asset.name, format_size(asset.size),
                    format_size(len(state.best)), format_size(budget))
        emit(ProgressEvent(100, "Compression complete."))
        return CompressionResult(state.best, kind, met_within_budget=len(state.best) <= budget)

    def _search_quality(self, canvas, kind, budget, state: SearchState, emit: ProgressSink) -> None:
        emit(ProgressEvent(SEARCH_START, "Starting binary search on quality…"))
        for i in range(self.max_iterations):
            mid = state.next_midpoint()
            data = self.encoder(canvas, kind, mid)
            percent = int(SEARCH_START + (i + 1) / self.max_iterations * SEARCH_SPAN)
            emit(ProgressEvent(percent, f"Quality {round(mid * 100)}% → {format_size(len(data))}"))
            fits = state.record(data, budget)
            logger.debug("iteration %d: quality=%.4f size=%d fits=%s", i + 1, mid, len(data), fits)
            if fits and state.close_enough(budget):
                break
            if state.converged:
                break

    def _scale_down(self, canvas, kind, budget, state: SearchState, emit: ProgressSink) -> None:
        emit(ProgressEvent(FALLBACK_START, "Quality limit reached — scaling dimensions…"))
        # re-encode at the last lower bound, the floor quality when nothing fit
        quality = state.lower
        for factor in FALLBACK_SCALES:
            data = self.encoder(scale_image(canvas, factor), kind, quality)
            percent = int(FALLBACK_START + (FALLBACK_SCALES[0] - factor) * FALLBACK_SPAN)
            emit(ProgressEvent(percent, f"Scale {round(factor * 100)}% → {format_size(len(data))}"))
            if len(data) <= budget:
                state.best = data
                return
