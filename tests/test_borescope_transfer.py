from __future__ import annotations

import base64
import json
import re
from pathlib import Path

import pytest

from modules.borescope.attachments import AttachmentBlob
from modules.borescope.exceptions import PackageFormatError, ValidationError
from modules.borescope.models import TailEnginePair
from modules.borescope.transfer import default_package_name
from tests.conftest import sample_record


@pytest.fixture()
def units(service_factory):
    sender = service_factory("sender")
    receiver = service_factory("receiver")
    return sender, receiver, sender.verify_password("1234"), receiver.verify_password("1234")


def _seed_history(svc):
    parent = svc.records.save(sample_record(inspectionDate="2024-01-15"))
    svc.save_attachments(
        parent.id,
        images=[AttachmentBlob("blade.png", b"png-bytes")],
        docs=[AttachmentBlob("report.pdf", b"pdf-bytes")],
    )
    follow = svc.records.save(
        sample_record(inspectionDate="2024-02-15", isFollowUp=True, previousRecordId=parent.id)
    )
    return parent, follow


def test_default_package_name() -> None:
    assert re.fullmatch(r"BDAS_ZK-001_\d{8}\.bdas", default_package_name(["ZK-001", " "]))
    assert re.fullmatch(r"BDAS_MULTI_\d{8}\.bdas", default_package_name(["A", "B"]))
    assert default_package_name(["A/B"]).startswith("BDAS_A_B_")


def test_tail_package_document(units, tmp_path: Path) -> None:
    sender, _, cap, _ = units
    _seed_history(sender)
    target = tmp_path / "tail.bdas"

    result = sender.export_tail_package(["ZK-001"], "2024-01-01", "", target, capability=cap)

    doc = json.loads(target.read_text(encoding="utf-8"))
    assert result.record_count == 2
    assert doc["app"] == "BDAS"
    assert doc["type"] == "TailPackage"
    assert doc["tailNo"] == "ZK-001"
    assert doc["tails"] == ["ZK-001"]
    assert doc["dateFrom"] == "2024-01-01"
    assert doc["dateTo"] == ""
    assert "engines" not in doc
    first = doc["records"][0]
    assert "imagePaths" not in first and "docPaths" not in first
    assert first["recordUuid"]
    assert base64.b64decode(first["imageFiles"][0]["dataB64"]) == b"png-bytes"
    assert first["docFiles"][0]["name"].endswith("_report.pdf")


def test_engine_package_document(units, tmp_path: Path) -> None:
    sender, _, cap, _ = units
    _seed_history(sender)
    sender.records.save(sample_record(engineSN="ENG-200", inspectionDate="2023-12-01"))
    target = tmp_path / "engines.bdas"

    result = sender.export_engine_package(["ENG-100", "ENG-200"], "2024-02-01", None, target, capability=cap)

    doc = json.loads(target.read_text(encoding="utf-8"))
    assert doc["type"] == "EnginePackage"
    assert doc["engines"] == ["ENG-100", "ENG-200"]
    assert doc["dateFrom"] == "2024-02-01"
    assert doc["dateTo"] is None
    assert "tailNo" not in doc and "tails" not in doc
    assert result.record_count == 1


def test_multi_tail_package_has_blank_tail_no(units, tmp_path: Path) -> None:
    sender, _, cap, _ = units
    sender.records.save(sample_record())
    sender.records.save(sample_record(aircraftTailNo="ZK-002"))

    sender.export_tail_package(["ZK-001", "ZK-002"], None, None, tmp_path / "multi.bdas", capability=cap)

    doc = json.loads((tmp_path / "multi.bdas").read_text(encoding="utf-8"))
    assert doc["tailNo"] == ""
    assert len(doc["records"]) == 2


def test_export_requires_scope(units, tmp_path: Path) -> None:
    sender, _, cap, _ = units
    with pytest.raises(ValidationError, match="Tail No is required"):
        sender.export_tail_package([" ", ""], None, None, tmp_path / "x.bdas", capability=cap)
    with pytest.raises(ValidationError, match="Engine S No is required"):
        sender.export_engine_package([], None, None, tmp_path / "y.bdas", capability=cap)


def test_import_merges_and_relinks_follow_ups(units, tmp_path: Path) -> None:
    sender, receiver, send_cap, recv_cap = units
    parent, follow = _seed_history(sender)
    package = tmp_path / "history.bdas"
    sender.export_tail_package(["ZK-001"], None, None, package, capability=send_cap)

    # local ids on the receiving side are already taken
    receiver.records.save(sample_record(aircraftTailNo="ZK-900"))
    receiver.records.save(sample_record(aircraftTailNo="ZK-901"))

    result = receiver.import_package(package, capability=recv_cap)

    assert result.package_type == "TailPackage"
    assert (result.imported, result.skipped) == (2, 0)
    assert result.attachment_failures == 0
    assert result.relinked == 1

    local_parent = receiver.records.find_by_uuid(parent.record_uuid)
    local_follow = receiver.records.find_by_uuid(follow.record_uuid)
    assert local_parent.id != parent.id
    assert local_follow.previous_record_id == local_parent.id
    assert local_follow.previous_record_uuid == parent.record_uuid
    assert [Path(p).read_bytes() for p in local_parent.image_paths] == [b"png-bytes"]
    assert [Path(p).read_bytes() for p in local_parent.doc_paths] == [b"pdf-bytes"]
    assert Path(local_parent.image_paths[0]).parent.name == str(local_parent.id)
    assert ("packageImported", (2, 0)) in receiver._signals.emitted


def test_reimport_skips_everything(units, tmp_path: Path) -> None:
    sender, receiver, send_cap, recv_cap = units
    _seed_history(sender)
    package = tmp_path / "again.bdas"
    sender.export_tail_package(["ZK-001"], None, None, package, capability=send_cap)

    receiver.import_package(package, capability=recv_cap)
    again = receiver.import_package(package, capability=recv_cap)

    assert (again.imported, again.skipped) == (0, 2)
    assert receiver.records.count() == 2


def test_import_reports_missing_assignments(units, tmp_path: Path) -> None:
    sender, receiver, send_cap, recv_cap = units
    sender.records.save(sample_record())
    sender.records.save(sample_record(inspectionDate="2024-04-01"))
    sender.records.save(sample_record(aircraftTailNo="ZK-002", engineSN="ENG-200"))
    sender.records.save({"overrideUsed": True, "aircraftTailNo": "ZK-003", "recordUuid": ""})
    package = tmp_path / "pairs.bdas"
    sender.export_engine_package(["ENG-100", "ENG-200"], None, None, package, capability=send_cap)
    receiver.attach_engine_to_tail("ZK-002", "ENG-200")

    result = receiver.import_package(package, capability=recv_cap)

    assert result.required_pairs == [
        TailEnginePair("ZK-001", "ENG-100"),
        TailEnginePair("ZK-002", "ENG-200"),
    ]
    assert result.missing_pairs == [TailEnginePair("ZK-001", "ENG-100")]
    assert "ZK-001" in receiver.list_tails()
    assert "ENG-100" in receiver.list_engines()


def test_import_rejects_blank_uuid_before_writing(units, tmp_path: Path) -> None:
    _, receiver, _, recv_cap = units
    package = tmp_path / "blank.bdas"
    package.write_text(
        json.dumps(
            {
                "app": "BDAS",
                "type": "TailPackage",
                "version": 1,
                "records": [
                    sample_record(recordUuid="good-uuid"),
                    sample_record(recordUuid="   "),
                ],
            }
        ),
        encoding="utf-8",
    )

    with pytest.raises(PackageFormatError):
        receiver.import_package(package, capability=recv_cap)
    assert receiver.records.count() == 0


def test_import_rejects_corrupt_attachment_before_writing(units, tmp_path: Path) -> None:
    _, receiver, _, recv_cap = units
    record = sample_record(recordUuid="u-1", imageFiles=[{"name": "a.png", "dataB64": "%%%"}])
    package = tmp_path / "corrupt.bdas"
    package.write_text(
        json.dumps({"app": "BDAS", "type": "EnginePackage", "records": [record]}), encoding="utf-8"
    )

    with pytest.raises(PackageFormatError):
        receiver.import_package(package, capability=recv_cap)
    assert receiver.records.count() == 0


@pytest.mark.parametrize(
    "document",
    [
        {"app": "OTHER", "type": "TailPackage", "records": []},
        {"app": "BDAS", "type": "FullBackup", "records": []},
        "just a string",
    ],
)
def test_import_rejects_foreign_documents(units, tmp_path: Path, document) -> None:
    _, receiver, _, recv_cap = units
    package = tmp_path / "foreign.bdas"
    package.write_text(json.dumps(document), encoding="utf-8")
    with pytest.raises(PackageFormatError):
        receiver.import_package(package, capability=recv_cap)


def test_attachment_write_failure_keeps_record(units, tmp_path: Path, monkeypatch) -> None:
    sender, receiver, send_cap, recv_cap = units
    _seed_history(sender)
    package = tmp_path / "flaky.bdas"
    sender.export_tail_package(["ZK-001"], None, None, package, capability=send_cap)

    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(receiver.attachments, "save_for_record", _fail)
    result = receiver.import_package(package, capability=recv_cap)

    assert result.imported == 2
    assert result.attachment_failures == 1
    assert receiver.records.count() == 2
