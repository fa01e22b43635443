from __future__ import annotations

import base64
from pathlib import Path

import pytest

from modules.borescope import BorescopeService
from modules.borescope import attachments as attachments_module
from modules.borescope.attachments import AttachmentBlob, AttachmentStore
from tests.conftest import sample_record
from utils.filesystem import safe_name


def test_safe_name_strips_reserved_characters() -> None:
    assert safe_name('a<b>c:"d/e\\f|g?h*i\x01.png') == "a_b_c__d_e_f_g_h_i_.png"
    assert len(safe_name("x" * 500)) == 180
    assert safe_name(None) == "file"


def test_save_for_record_writes_files_and_paths(service: BorescopeService) -> None:
    saved = service.records.save(sample_record())

    result = service.save_attachments(
        saved.id,
        images=[{"name": "blade.png", "data": b"\x89PNG"}],
        docs=[AttachmentBlob("report.pdf", b"%PDF")],
    )

    assert len(result["images"]) == 1
    image = Path(result["images"][0])
    assert image.is_absolute()
    assert image.parent == (service.paths.attachments_dir / str(saved.id)).resolve()
    assert image.name.endswith("_blade.png")
    assert image.read_bytes() == b"\x89PNG"

    stored = service.records.fetch(saved.id)
    assert stored.image_paths == result["images"]
    assert stored.doc_paths == result["docs"]
    assert "recordsChanged" in service._signals.names()


def test_same_name_in_same_millisecond_never_overwrites(
    service: BorescopeService, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(attachments_module, "epoch_millis", lambda: 1700000000000)
    paths = service.attachments.write(5, [AttachmentBlob("a.jpg", b"1"), AttachmentBlob("a.jpg", b"2")])

    assert [Path(p).name for p in paths] == ["1700000000000_a.jpg", "1700000000000_1_a.jpg"]
    assert [Path(p).read_bytes() for p in paths] == [b"1", b"2"]


def test_replacing_attachments_keeps_old_files(service: BorescopeService) -> None:
    saved = service.records.save(sample_record())
    first = service.save_attachments(saved.id, images=[AttachmentBlob("one.png", b"1")])
    service.save_attachments(saved.id, images=[AttachmentBlob("two.png", b"2")])

    assert Path(first["images"][0]).exists()
    assert len(service.records.fetch(saved.id).image_paths) == 1


def test_blob_coerce_accepts_base64_mapping() -> None:
    blob = AttachmentBlob.coerce({"name": "x.bin", "dataB64": base64.b64encode(b"abc").decode()})
    assert blob == AttachmentBlob("x.bin", b"abc")


def test_image_data_url_and_missing_files(tmp_path: Path) -> None:
    image = tmp_path / "shot.PNG"
    image.write_bytes(b"img")

    url = AttachmentStore.image_data_url(image)
    assert url == "data:image/png;base64," + base64.b64encode(b"img").decode()
    assert AttachmentStore.image_data_url(tmp_path / "gone.jpg") == ""
    assert AttachmentStore.read_blob(tmp_path / "gone.jpg") is None
    assert AttachmentStore.read_blob(image).data == b"img"


def test_open_missing_attachment_reports_error(service: BorescopeService, tmp_path: Path) -> None:
    result = service.open_attachment(str(tmp_path / "missing.pdf"))
    assert result == {"ok": False, "error": "File not found."}
