from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Tuple

import pytest

# Qt needs a platform plugin even for QObject signals.  Offscreen avoids
# libGL dependencies inside the test container.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from modules.borescope import BorescopeService
from utils.app_settings import AppPaths

SIGNAL_NAMES = (
    "recordsChanged",
    "fleetChanged",
    "databaseReopened",
    "backupCreated",
    "packageImported",
)


class _RecordedSignal:
    def __init__(self, name: str, log: List[Tuple[str, tuple]]) -> None:
        self._name = name
        self._log = log

    def emit(self, *args: Any) -> None:
        self._log.append((self._name, args))


class RecordingSignals:
    """Stand-in for ``app_signals`` that remembers every emission."""

    def __init__(self) -> None:
        self.emitted: List[Tuple[str, tuple]] = []
        for name in SIGNAL_NAMES:
            setattr(self, name, _RecordedSignal(name, self.emitted))

    def names(self) -> List[str]:
        return [name for name, _ in self.emitted]


def build_service(data_dir: Path) -> BorescopeService:
    service = BorescopeService(AppPaths(data_dir), signals=RecordingSignals())
    service.initialize()
    return service


@pytest.fixture()
def service(tmp_path: Path) -> Iterator[BorescopeService]:
    svc = build_service(tmp_path / "unit_a")
    yield svc
    svc.shutdown()


@pytest.fixture()
def admin(service: BorescopeService):
    capability = service.verify_password("1234")
    assert capability is not None
    return capability


def sample_record(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "aircraftTailNo": "ZK-001",
        "engineSN": "ENG-100",
        "inspectionDate": "2024-03-01",
        "engineHours": "1200",
        "inspectionType": "Routine",
        "scheduledUnscheduled": "Scheduled",
        "inspectionArea": "HPT",
        "subArea": "Stage 1 Blades",
        "stageNumber": "1",
        "defectType": "Nick",
        "length": "2.5",
        "disposal": "Serviceable",
        "inspectorName": "A. Inspector",
        "inspectorId": "I-42",
        "unitSection": "Line Maintenance",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_record() -> Callable[..., Dict[str, Any]]:
    return sample_record


@pytest.fixture()
def service_factory(tmp_path: Path) -> Iterator[Callable[[str], BorescopeService]]:
    """Build extra services, each on its own data directory (one per unit)."""
    created: List[BorescopeService] = []

    def _make(name: str) -> BorescopeService:
        svc = build_service(tmp_path / name)
        created.append(svc)
        return svc

    yield _make
    for svc in created:
        svc.shutdown()
