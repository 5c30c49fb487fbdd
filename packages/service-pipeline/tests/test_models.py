import pytest

from service_pipeline.core.exceptions import ValidationError
from service_pipeline.core.models import (
    BoundingBox,
    RankedService,
    ServiceRecord,
    ServiceSource,
    ServiceType,
    validate_service,
)


def make_record(**overrides) -> ServiceRecord:
    values = {
        "name": "Amman Clinic",
        "type": ServiceType.CLINIC,
        "address": "Amman",
        "latitude": 31.95,
        "longitude": 35.93,
        "source": ServiceSource.OSM,
        "external_id": "node/1",
        "country": "Jordan",
    }
    values.update(overrides)
    return ServiceRecord(**values)


def test_validate_service_accepts_complete_record() -> None:
    record = make_record()
    assert validate_service(record) is record


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"latitude": None},
        {"longitude": 181.0},
        {"latitude": -91.0},
        {"external_id": None},
        {"source": ServiceSource.MANUAL},
        {"name": "x" * 256},
        {"phone": "+962 6 555 0100; " * 5},
        {"country": "J" * 129},
    ],
)
def test_validate_service_rejects_broken_records(overrides) -> None:
    with pytest.raises(ValidationError):
        validate_service(make_record(**overrides))


def test_manual_record_without_external_id_is_valid() -> None:
    record = make_record(source=ServiceSource.MANUAL, external_id=None, created_by="user-1")
    assert validate_service(record).created_by == "user-1"


def test_bounding_box_parse_and_center() -> None:
    bbox = BoundingBox.parse("-4.7, 33.9, 5.0, 41.9")

    assert bbox.to_overpass() == "-4.7,33.9,5.0,41.9"
    assert bbox.center.lat == pytest.approx(0.15)
    assert bbox.center.lng == pytest.approx(37.9)


@pytest.mark.parametrize("raw", ["1,2,3", "a,b,c,d", "10,0,5,1", "0,0,95,1"])
def test_bounding_box_parse_rejects_invalid_values(raw: str) -> None:
    with pytest.raises(ValueError):
        BoundingBox.parse(raw)


def test_ranked_service_serializes_priority_and_badge() -> None:
    payload = RankedService(service=make_record(languages=("en", "ar")), priority=2, badge="OSM").to_dict()

    assert payload["priority"] == 2
    assert payload["badge"] == "OSM"
    assert payload["source"] == "OSM"
    assert payload["type"] == "clinic"
    assert payload["languages"] == ["en", "ar"]
