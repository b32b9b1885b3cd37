"""Analytics hooks fired by the orchestrator.

``AnalyticsSink`` is the capability the orchestrator depends on; its methods
are all no-ops, so the base class doubles as the null object used when no
backend is available. ``SqlAnalytics`` stores one row per event and never
lets a backend error reach the caller.
"""
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from compresslimit import db
from compresslimit.config import ANALYTICS_ENABLED

if TYPE_CHECKING:
    from compresslimit.compression.models import MediaKind

logger = logging.getLogger("compresslimit.analytics")


class AnalyticsSink:
    def file_accepted(self, media_kind: "MediaKind", size_bytes: int) -> None:
        pass

    def compression_started(self, media_kind: "MediaKind", original_bytes: int, target_bytes: int) -> None:
        pass

    def compression_succeeded(
        self,
        media_kind: "MediaKind",
        original_bytes: int,
        compressed_bytes: int,
        reduction_pct: float,
        within_target: bool,
    ) -> None:
        pass

    def compression_failed(self, media_kind: "MediaKind", error_message: str) -> None:
        pass

    def file_downloaded(self, media_kind: "MediaKind", compressed_bytes: int, reduction_pct: float) -> None:
        pass

    def recompress_requested(self) -> None:
        pass

    def file_removed(self) -> None:
        pass


class NullAnalytics(AnalyticsSink):
    """Used when analytics are disabled or the database could not be prepared."""


def _kb(num_bytes: int) -> int:
    return round(num_bytes / 1024)


class SqlAnalytics(AnalyticsSink):
    def __init__(self, session_id: str):
        self.session_id = session_id

    def _track(self, event: str, media_kind=None, **params) -> None:
        try:
            db.record_event(self.session_id, event, media_kind.value if media_kind else None, params)
        except SQLAlchemyError as e:
            logger.warning("Dropped analytics event %s: %s", event, e)

    def file_accepted(self, media_kind, size_bytes):
        self._track("file_uploaded", media_kind, file_size_kb=_kb(size_bytes))

    def compression_started(self, media_kind, original_bytes, target_bytes):
        reduction_target = (1 - target_bytes / original_bytes) * 100 if original_bytes else 0.0
        self._track(
            "compress_started",
            media_kind,
            original_size_kb=_kb(original_bytes),
            target_size_kb=_kb(target_bytes),
            reduction_target_pct=round(reduction_target),
        )

    def compression_succeeded(self, media_kind, original_bytes, compressed_bytes, reduction_pct, within_target):
        self._track(
            "compress_success",
            media_kind,
            original_size_kb=_kb(original_bytes),
            compressed_size_kb=_kb(compressed_bytes),
            reduction_pct=round(reduction_pct, 1),
            within_target=within_target,
        )

    def compression_failed(self, media_kind, error_message):
        self._track("compress_error", media_kind, error_message=error_message[:100])

    def file_downloaded(self, media_kind, compressed_bytes, reduction_pct):
        self._track(
            "file_downloaded",
            media_kind,
            compressed_size_kb=_kb(compressed_bytes),
            reduction_pct=round(reduction_pct, 1),
        )

    def recompress_requested(self):
        self._track("recompress_clicked")

    def file_removed(self):
        self._track("file_removed")


def get_analytics(session_id: str) -> AnalyticsSink:
    if ANALYTICS_ENABLED and db.is_ready():
        return SqlAnalytics(session_id)
    return NullAnalytics()
