"""
Unit tests for the best-effort PDF re-save.
"""

import io

import pikepdf
import pytest

from compresslimit.compression.document import EPOCH, DocumentReviser
from compresslimit.compression.models import LOAD_PDF_FAILED, CompressionError, DocumentAsset, MediaKind

from conftest import pdf_asset


@pytest.fixture
def reviser():
    return DocumentReviser()


class TestDocumentReviser:

    def test_reports_fixed_progress_steps(self, reviser):
        events = []

        reviser.compress(pdf_asset(), 10 * 1024 * 1024, events.append)

        assert [e.percent for e in events] == [10, 35, 65, 90, 100]
        assert events[2].step == "Re-encoding with object streams…"
        assert events[3].step.startswith("Checking size: ")

    def test_strips_descriptive_metadata(self, reviser):
        result = reviser.compress(pdf_asset(title="Secret plans", xmp=True), 10 * 1024 * 1024)

        with pikepdf.open(io.BytesIO(result.data)) as pdf:
            info = pdf.docinfo
            for key in ("/Title", "/Author", "/Subject", "/Keywords", "/Creator", "/Producer"):
                assert str(info[key]) == ""
            assert str(info["/CreationDate"]) == EPOCH
            assert str(info["/ModDate"]) == EPOCH
            assert "/Metadata" not in pdf.Root
            assert len(pdf.pages) == 1

    @pytest.mark.parametrize("budget", [10, 100 * 1024 * 1024])
    def test_flag_matches_output_size(self, reviser, budget):
        result = reviser.compress(pdf_asset(pages=3), budget)

        assert result.media_kind == MediaKind.PDF
        assert result.met_within_budget == (result.size <= budget)

    def test_missed_budget_still_returns_output(self, reviser):
        result = reviser.compress(pdf_asset(), 10)

        assert result.met_within_budget is False
        assert result.data.startswith(b"%PDF")

    def test_password_protected_document_is_rejected_after_load_step(self, reviser):
        asset = pdf_asset(encryption=pikepdf.Encryption(owner="owner-pw", user="user-pw"))
        events = []

        with pytest.raises(CompressionError) as excinfo:
            reviser.compress(asset, 1024 * 1024, events.append)

        assert str(excinfo.value) == LOAD_PDF_FAILED
        assert [e.percent for e in events] == [10]

    def test_encrypted_document_without_user_password_is_rejected(self, reviser):
        asset = pdf_asset(encryption=pikepdf.Encryption(owner="owner-pw", user=""))
        events = []

        with pytest.raises(CompressionError):
            reviser.compress(asset, 1024 * 1024, events.append)

        assert [e.percent for e in events] == [10]

    def test_garbage_input_is_rejected(self, reviser):
        asset = DocumentAsset(name="notes.pdf", data=b"this is not a pdf")

        with pytest.raises(CompressionError) as excinfo:
            reviser.compress(asset, 1024)

        assert str(excinfo.value) == LOAD_PDF_FAILED
