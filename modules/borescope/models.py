"""Domain models for borescope inspection records and fleet assignments.

Rows are persisted with the camelCase column names used by earlier BDAS
databases so backups stay interchangeable.  Inside the application the record
is a dataclass with typed values; :meth:`InspectionRecord.to_row` and
:meth:`InspectionRecord.from_row` are the only places that convert between
the two shapes.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

SHORT_SAMPLING_DISPOSAL = "Monitoring on Short Sampling"

# attribute name -> column name, in table order
FIELD_COLUMNS: Dict[str, str] = {
    "id": "id",
    "aircraft_tail_no": "aircraftTailNo",
    "engine_sn": "engineSN",
    "inspection_date": "inspectionDate",
    "engine_hours": "engineHours",
    "inspection_type": "inspectionType",
    "scheduled_unscheduled": "scheduledUnscheduled",
    "inspection_area": "inspectionArea",
    "sub_area": "subArea",
    "stage_number": "stageNumber",
    "edge": "edge",
    "zone": "zone",
    "blade_coverage": "bladeCoverage",
    "defect_type": "defectType",
    "length": "length",
    "width": "width",
    "height": "height",
    "area": "area",
    "short_sampling_hours": "shortSamplingHours",
    "inspector_name": "inspectorName",
    "inspector_id": "inspectorId",
    "unit_section": "unitSection",
    "disposal": "disposal",
    "remarks": "remarks",
    "tst_taf_enabled": "tstTafEnabled",
    "tst_taf_number": "tstTafNumber",
    "image_paths": "imagePaths",
    "doc_paths": "docPaths",
    "is_follow_up": "isFollowUp",
    "previous_record_id": "previousRecordId",
    "previous_record_uuid": "previousRecordUuid",
    "override_used": "overrideUsed",
    "created_at": "createdAt",
    "record_uuid": "recordUuid",
}
COLUMN_FIELDS: Dict[str, str] = {col: attr for attr, col in FIELD_COLUMNS.items()}

BOOL_FIELDS = frozenset({"tst_taf_enabled", "is_follow_up", "override_used"})
LIST_FIELDS = frozenset({"image_paths", "doc_paths"})
UUID_FIELDS = frozenset({"record_uuid", "previous_record_uuid"})

# Columns written on insert (everything except the autoincrement id)
INSERT_COLUMNS: List[str] = [col for attr, col in FIELD_COLUMNS.items() if attr != "id"]


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def normalize_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def coerce_optional_int(value: Any) -> Optional[int]:
    if value in (None, "", False):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number or None


def parse_path_list(value: Any) -> List[str]:
    """Decode a stored JSON path list; anything unreadable becomes empty."""
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item]
    try:
        decoded = json.loads(str(value or "[]"))
    except json.JSONDecodeError:
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded if item]


def _lookup(data: Mapping[str, Any], attr: str) -> Any:
    column = FIELD_COLUMNS[attr]
    if column in data:
        return data[column]
    return data.get(attr)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class InspectionRecord:
    """One borescope defect observation."""

    id: Optional[int] = None
    aircraft_tail_no: str = ""
    engine_sn: str = ""
    inspection_date: str = ""
    engine_hours: str = ""
    inspection_type: str = ""
    scheduled_unscheduled: str = ""
    inspection_area: str = ""
    sub_area: str = ""
    stage_number: str = ""
    edge: str = ""
    zone: str = ""
    blade_coverage: str = ""
    defect_type: str = ""
    length: str = ""
    width: str = ""
    height: str = ""
    area: str = ""
    short_sampling_hours: str = ""
    inspector_name: str = ""
    inspector_id: str = ""
    unit_section: str = ""
    disposal: str = ""
    remarks: str = ""
    tst_taf_enabled: bool = False
    tst_taf_number: str = ""
    image_paths: List[str] = field(default_factory=list)
    doc_paths: List[str] = field(default_factory=list)
    is_follow_up: bool = False
    previous_record_id: Optional[int] = None
    previous_record_uuid: str = ""
    override_used: bool = False
    created_at: str = ""
    record_uuid: str = ""

    @classmethod
    def from_input(cls, data: Mapping[str, Any]) -> "InspectionRecord":
        """Build a record from form or package data.

        Keys may be either the column names (``aircraftTailNo``) or the
        attribute names (``aircraft_tail_no``); missing keys take defaults.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = _lookup(data, f.name)
            if f.name == "id":
                values["id"] = coerce_optional_int(raw)
            elif f.name == "previous_record_id":
                values[f.name] = coerce_optional_int(raw)
            elif f.name in BOOL_FIELDS:
                values[f.name] = coerce_bool(raw)
            elif f.name in LIST_FIELDS:
                values[f.name] = parse_path_list(raw)
            else:
                values[f.name] = normalize_string(raw)
        return cls(**values)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InspectionRecord":
        data = dict(row)
        record = cls.from_input(data)
        record.id = int(data["id"]) if data.get("id") is not None else None
        return record

    def to_row(self) -> Dict[str, Any]:
        """Return column -> value mapping ready for SQLite."""
        row: Dict[str, Any] = {}
        for attr, column in FIELD_COLUMNS.items():
            value = getattr(self, attr)
            if attr in BOOL_FIELDS:
                row[column] = 1 if value else 0
            elif attr in LIST_FIELDS:
                row[column] = json.dumps(list(value), ensure_ascii=False)
            else:
                row[column] = value
        return row

    def to_transfer_row(self) -> Dict[str, Any]:
        """Column-keyed row with path lists decoded, as used for packaging."""
        row = self.to_row()
        row["imagePaths"] = list(self.image_paths)
        row["docPaths"] = list(self.doc_paths)
        return row

    def to_display(self) -> Dict[str, Any]:
        """Attribute-keyed dict without the internal merge keys."""
        data = asdict(self)
        for name in UUID_FIELDS:
            data.pop(name, None)
        return data


@dataclass(slots=True)
class InsertOutcome:
    """Result of inserting one packaged record."""

    id: int
    skipped: bool


# ---------------------------------------------------------------------------
# Fleet
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Assignment:
    """Time-bounded pairing of one tail and one engine."""

    id: int
    tail_no: str
    engine_sn: str
    attached_at: str
    detached_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.detached_at is None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Assignment":
        return cls(
            id=int(row["id"]),
            tail_no=row["tailNo"],
            engine_sn=row["engineSN"],
            attached_at=row["attachedAt"],
            detached_at=row["detachedAt"],
        )


@dataclass(frozen=True, slots=True)
class TailEnginePair:
    tail_no: str
    engine_sn: str


__all__ = [
    "Assignment",
    "BOOL_FIELDS",
    "COLUMN_FIELDS",
    "FIELD_COLUMNS",
    "INSERT_COLUMNS",
    "InsertOutcome",
    "InspectionRecord",
    "LIST_FIELDS",
    "SHORT_SAMPLING_DISPOSAL",
    "TailEnginePair",
    "UUID_FIELDS",
    "coerce_bool",
    "coerce_optional_int",
    "normalize_string",
    "parse_path_list",
]
