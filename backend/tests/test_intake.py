import pytest

from compresslimit.compression.models import DocumentAsset, MediaKind, RasterAsset
from compresslimit.intake import IncomingFile, accept_files, detect_media_kind


@pytest.mark.parametrize("name,content_type,expected", [
    ("a.jpg", "image/jpeg", MediaKind.JPEG),
    ("a.jpg", "image/jpg", MediaKind.JPEG),
    ("a.png", "image/png", MediaKind.PNG),
    ("a.pdf", "application/pdf", MediaKind.PDF),
    ("A.JPEG", None, MediaKind.JPEG),
    ("scan.pdf", "application/octet-stream", MediaKind.PDF),
    ("a.gif", "image/gif", None),
    ("a.webp", "", None),
    ("a.png", "text/plain", None),
])
def test_detect_media_kind(name, content_type, expected):
    assert detect_media_kind(name, content_type) == expected


def test_accepted_files_become_assets():
    result = accept_files([
        IncomingFile("a.jpg", b"j", "image/jpeg"),
        IncomingFile("b.png", b"p", "image/png"),
        IncomingFile("c.pdf", b"d", "application/pdf"),
    ])

    assert result.rejections == []
    a, b, c = result.assets
    assert isinstance(a, RasterAsset) and a.media_kind == MediaKind.JPEG
    assert isinstance(b, RasterAsset) and b.media_kind == MediaKind.PNG
    assert isinstance(c, DocumentAsset)


def test_type_and_size_rejections():
    result = accept_files(
        [
            IncomingFile("anim.gif", b"g", "image/gif"),
            IncomingFile("huge.jpg", b"x" * (2 * 1024 * 1024 + 1), "image/jpeg"),
            IncomingFile("ok.jpg", b"x", "image/jpeg"),
        ],
        max_bytes=2 * 1024 * 1024,
    )

    assert [a.name for a in result.assets] == ["ok.jpg"]
    assert [r.to_dict() for r in result.rejections] == [
        {"filename": "anim.gif", "reason": "unsupported type. Only JPG, PNG, PDF."},
        {"filename": "huge.jpg", "reason": "exceeds 2 MB limit."},
    ]


def test_count_limit_truncates_batch():
    files = [IncomingFile(f"{i}.jpg", b"x", "image/jpeg") for i in range(5)]

    result = accept_files(files, current_count=2, max_files=5)

    assert [a.name for a in result.assets] == ["0.jpg", "1.jpg", "2.jpg"]
    assert [r.name for r in result.rejections] == ["3.jpg", "4.jpg"]
    assert result.rejections[0].reason == "Only 3 more file(s) accepted (max 5)."


def test_full_session_rejects_everything():
    result = accept_files([IncomingFile("a.jpg", b"x", "image/jpeg")], current_count=20, max_files=20)

    assert result.assets == []
    assert result.rejections[0].reason == "Maximum 20 files allowed."
