from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import CLIENT_LAT, CLIENT_LON, SCHEDULED_START, north_of
from evv_compliance.domain import VisitData
from evv_compliance.exceptions import StateNotSupported
from evv_compliance.services.state_compliance_service import StateComplianceService
from evv_compliance.state_rules import StateRuleCatalog


@pytest.fixture
def service():
    return StateComplianceService(catalog=StateRuleCatalog())


def visit(distance_m=0, accuracy=20.0, clock_out_distance_m=None, clock_out_after_min=None,
          scheduled_end_after_min=None, mock_location=False):
    values = dict(
        client_latitude=CLIENT_LAT,
        client_longitude=CLIENT_LON,
        clock_in_latitude=north_of(CLIENT_LAT, distance_m),
        clock_in_longitude=CLIENT_LON,
        clock_in_time=SCHEDULED_START,
        scheduled_start_time=SCHEDULED_START,
        gps_accuracy=accuracy,
        mock_location_detected=mock_location,
    )
    if clock_out_after_min is not None:
        values.update(
            clock_out_latitude=north_of(CLIENT_LAT, clock_out_distance_m or 0),
            clock_out_longitude=CLIENT_LON,
            clock_out_time=SCHEDULED_START + timedelta(minutes=clock_out_after_min),
        )
    if scheduled_end_after_min is not None:
        values["scheduled_end_time"] = SCHEDULED_START + timedelta(minutes=scheduled_end_after_min)
    return VisitData(**values)


def codes(issues):
    return [issue.code for issue in issues]


def test_compliant_visit(service):
    result = service.validate_evv_for_state("TX", visit(distance_m=10, clock_out_after_min=120))
    assert result.valid
    assert result.errors == ()
    assert result.warnings == ()
    assert "Texas" in result.regulatory_context


def test_geofence_violation(service):
    result = service.validate_evv_for_state("TX", visit(distance_m=150))
    assert not result.valid
    [error] = result.errors
    assert error.code == "GEOFENCE_VIOLATION"
    assert error.field == "clockInLocation"
    assert "150m" in error.message
    assert "120m" in error.message


def test_gps_accuracy_exceeded(service):
    result = service.validate_evv_for_state("TX", visit(accuracy=120))
    assert codes(result.errors) == ["GPS_ACCURACY_EXCEEDED"]


def test_accuracy_at_ceiling_is_accepted(service):
    assert service.validate_evv_for_state("TX", visit(accuracy=100)).valid


def test_mock_location(service):
    result = service.validate_evv_for_state("TX", visit(mock_location=True))
    assert result.has_error("MOCK_LOCATION_DETECTED")


def test_clock_out_outside_geofence(service):
    result = service.validate_evv_for_state(
        "TX", visit(clock_out_distance_m=400, clock_out_after_min=120)
    )
    assert codes(result.errors) == ["CLOCK_OUT_GEOFENCE_VIOLATION"]


def test_clock_out_before_clock_in(service):
    result = service.validate_evv_for_state("TX", visit(clock_out_after_min=-5))
    assert result.has_error("CLOCK_OUT_BEFORE_CLOCK_IN")


def test_late_clock_out_is_a_warning(service):
    result = service.validate_evv_for_state(
        "TX", visit(clock_out_after_min=150, scheduled_end_after_min=120)
    )
    assert result.valid
    assert codes(result.warnings) == ["LATE_CLOCK_OUT"]


def test_late_clock_out_within_grace(service):
    result = service.validate_evv_for_state(
        "TX", visit(clock_out_after_min=128, scheduled_end_after_min=120)
    )
    assert result.warnings == ()


def test_geofence_not_enforced_state(service):
    result = service.validate_evv_for_state("AK", visit(distance_m=5000, clock_out_after_min=60))
    assert result.valid
    assert codes(result.warnings) == ["GEOFENCE_NOT_ENFORCED"]


def test_not_mandated_state_warns():
    rules = StateRuleCatalog().get("GA")
    catalog = StateRuleCatalog({"GA": replace(rules, mandated=False)})
    result = StateComplianceService(catalog).validate_evv_for_state("GA", visit())
    assert result.valid
    assert codes(result.warnings) == ["EVV_NOT_MANDATED"]


def test_valid_iff_no_errors(service):
    for data in (visit(), visit(distance_m=500), visit(accuracy=500), visit(mock_location=True)):
        result = service.validate_evv_for_state("TX", data)
        assert result.valid == (len(result.errors) == 0)


def test_unsupported_state(service):
    with pytest.raises(StateNotSupported):
        service.validate_evv_for_state("ZZ", visit())


def test_catalog_pass_throughs(service):
    assert service.get_geofence_radius("TX", 20) == 120
    assert service.get_grace_periods("FL").late_clock_out_minutes == 15
    assert service.get_evv_aggregators("PA") == ["Sandata", "HHAeXchange"]
