"""Required-field policy for inspection records."""
from __future__ import annotations

from typing import List, Tuple

from .exceptions import RecordValidationError
from .models import SHORT_SAMPLING_DISPOSAL, InspectionRecord

# (attribute, label shown to the operator), checked in form order
REQUIRED_RECORD_FIELDS: List[Tuple[str, str]] = [
    ("aircraft_tail_no", "Tail No"),
    ("engine_sn", "Engine Serial No"),
    ("inspection_date", "Inspection Date"),
    ("engine_hours", "Engine Hours"),
    ("inspection_type", "Inspection Type"),
    ("scheduled_unscheduled", "Scheduled/Unscheduled"),
    ("inspection_area", "Inspection Area"),
    ("sub_area", "Sub Area"),
    ("defect_type", "Defect Type"),
    ("disposal", "Disposal"),
    ("inspector_name", "Inspector Name"),
    ("inspector_id", "Inspector ID"),
    ("unit_section", "Unit / Section"),
]

DIMENSION_FIELDS = ("length", "width", "height", "area")


def _blank(value: str) -> bool:
    return not str(value or "").strip()


def validate_record(record: InspectionRecord) -> None:
    """Raise :class:`RecordValidationError` for the first rule ``record`` breaks."""
    for attr, label in REQUIRED_RECORD_FIELDS:
        if _blank(getattr(record, attr)):
            raise RecordValidationError(label)

    if all(_blank(getattr(record, attr)) for attr in DIMENSION_FIELDS):
        raise RecordValidationError(
            "Length/Width/Height/Area",
            "At least one of Length/Width/Height/Area is required.",
        )

    if record.tst_taf_enabled and _blank(record.tst_taf_number):
        raise RecordValidationError(
            "TST/TAF Number", "TST/TAF Number is required when TST/TAF is ON."
        )

    if record.disposal == SHORT_SAMPLING_DISPOSAL and _blank(record.short_sampling_hours):
        raise RecordValidationError(
            "Short Sampling Frequency",
            "Short Sampling Frequency is required for Monitoring on Short Sampling.",
        )

    if record.is_follow_up and not record.previous_record_id:
        raise RecordValidationError(
            "Previous Record",
            "Previous defect entry must be selected for follow-up.",
        )


__all__ = ["DIMENSION_FIELDS", "REQUIRED_RECORD_FIELDS", "validate_record"]
