"""Best-effort PDF re-save: strip metadata and rewrite with object streams."""
import io
import logging
from typing import Optional

import pikepdf
from pikepdf import Name, ObjectStreamMode

from compresslimit.compression.models import (
    LOAD_PDF_FAILED,
    CompressionError,
    CompressionResult,
    DocumentAsset,
    MediaKind,
    ProgressEvent,
    ProgressSink,
)
from compresslimit.sizes import format_size

logger = logging.getLogger("compresslimit.document")

EPOCH = "D:19700101000000Z"
CLEARED_FIELDS = ("/Title", "/Author", "/Subject", "/Keywords", "/Creator", "/Producer")
DATE_FIELDS = ("/CreationDate", "/ModDate")


def _ignore(event: ProgressEvent) -> None:
    pass


def strip_metadata(pdf: pikepdf.Pdf) -> None:
    """Blank the document info fields, reset its dates to the epoch, drop XMP."""
    info = pdf.docinfo
    for key in CLEARED_FIELDS:
        info[Name(key)] = pikepdf.String("")
    for key in DATE_FIELDS:
        info[Name(key)] = pikepdf.String(EPOCH)
    if Name.Metadata in pdf.Root:
        del pdf.Root[Name.Metadata]


class DocumentReviser:
    """One-shot structural rewrite. Never fails for a missed budget, only for unreadable input."""

    def compress(
        self,
        asset: DocumentAsset,
        budget: int,
        progress: Optional[ProgressSink] = None,
    ) -> CompressionResult:
        if budget <= 0:
            raise ValueError(f"Budget must be positive, got {budget}")
        emit = progress or _ignore

        emit(ProgressEvent(10, "Loading PDF document…"))
        try:
            pdf = pikepdf.open(io.BytesIO(asset.data))
        except (pikepdf.PasswordError, pikepdf.PdfError) as e:
            logger.warning("Could not open %s: %s", asset.name, e)
            raise CompressionError(LOAD_PDF_FAILED) from e

        with pdf:
            if pdf.is_encrypted:
                logger.warning("Refusing encrypted document %s", asset.name)
                raise CompressionError(LOAD_PDF_FAILED)

            emit(ProgressEvent(35, "Stripping metadata…"))
            strip_metadata(pdf)

            emit(ProgressEvent(65, "Re-encoding with object streams…"))
            out = io.BytesIO()
            pdf.save(
                out,
                object_stream_mode=ObjectStreamMode.generate,
                compress_streams=True,
                recompress_flate=True,
            )
        data = out.getvalue()

        emit(ProgressEvent(90, f"Checking size: {format_size(len(data))}"))
        met = len(data) <= budget
        if not met:
            logger.info("%s: best effort %s still above budget %s", asset.name,
                        format_size(len(data)), format_size(budget))
        emit(ProgressEvent(100, "Done."))
        return CompressionResult(data, MediaKind.PDF, met_within_budget=met)
