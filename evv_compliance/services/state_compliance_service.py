# state_compliance_service.py
import logging

from ..domain import ValidationIssue, ValidationResult
from ..geo import haversine_distance, round_half_up
from ..state_rules import get_default_catalog

logger = logging.getLogger(__name__)


class StateComplianceService:
    """
    Applies one state's EVV rules to a visit.

    Errors make the visit invalid; warnings are informational only.
    """

    def __init__(self, catalog=None):
        self.catalog = catalog or get_default_catalog()

    def validate_evv_for_state(self, state, visit_data):
        rules = self.catalog.get(state)
        errors = []
        warnings = []

        if not rules.mandated:
            warnings.append(ValidationIssue(
                code="EVV_NOT_MANDATED",
                message=f"EVV is not mandated in {rules.state_name}, but validation proceeding as best practice.",
                field="state",
            ))

        if visit_data.gps_accuracy is not None and visit_data.gps_accuracy > rules.max_gps_accuracy_meters:
            errors.append(ValidationIssue(
                code="GPS_ACCURACY_EXCEEDED",
                message=(
                    f"GPS accuracy of {round_half_up(visit_data.gps_accuracy)}m exceeds the "
                    f"{round_half_up(rules.max_gps_accuracy_meters)}m maximum"
                ),
                field="gpsAccuracy",
                regulation=f"{state} requires GPS accuracy within {round_half_up(rules.max_gps_accuracy_meters)}m",
            ))

        if visit_data.mock_location_detected:
            errors.append(ValidationIssue(
                code="MOCK_LOCATION_DETECTED",
                message="Device reported a mock or spoofed GPS location at clock-in",
                field="clockInLocation",
            ))

        if rules.geofencing_required:
            error = self._check_geofence(
                state, rules, visit_data,
                visit_data.clock_in_latitude, visit_data.clock_in_longitude,
                code="GEOFENCE_VIOLATION", field="clockInLocation", label="Clock-in",
            )
            if error is not None:
                errors.append(error)
        else:
            warnings.append(ValidationIssue(
                code="GEOFENCE_NOT_ENFORCED",
                message=f"{rules.state_name} does not enforce geofencing; location recorded for audit only.",
                field="clockInLocation",
            ))

        if visit_data.has_clock_out:
            errors.extend(self._check_clock_out(state, rules, visit_data))
            warning = self._check_late_clock_out(state, rules, visit_data)
            if warning is not None:
                warnings.append(warning)

        result = ValidationResult(
            errors=tuple(errors),
            warnings=tuple(warnings),
            regulatory_context=rules.regulatory_context,
        )
        if not result.valid:
            logger.info(f"EVV validation for {state} failed: {[e.code for e in result.errors]}")
        return result

    # Catalog pass-throughs so callers only need this service
    def get_geofence_radius(self, state, gps_accuracy=None):
        return self.catalog.geofence_radius(state, gps_accuracy)

    def get_grace_periods(self, state):
        return self.catalog.grace_periods(state)

    def get_evv_aggregators(self, state):
        return self.catalog.required_aggregators(state)

    def _check_geofence(self, state, rules, visit_data, latitude, longitude, code, field, label):
        distance = haversine_distance(
            visit_data.client_latitude,
            visit_data.client_longitude,
            latitude,
            longitude,
        )
        allowed_radius = self.catalog.geofence_radius(state, visit_data.gps_accuracy)

        if distance > allowed_radius:
            return ValidationIssue(
                code=code,
                message=(
                    f"{label} location is {round_half_up(distance)}m from client address, "
                    f"exceeding allowed radius of {round_half_up(allowed_radius)}m"
                ),
                field=field,
                regulation=f"{state} requires geofencing within {round_half_up(rules.base_radius_meters)}m + GPS accuracy",
            )
        return None

    def _check_clock_out(self, state, rules, visit_data):
        errors = []
        if rules.geofencing_required:
            error = self._check_geofence(
                state, rules, visit_data,
                visit_data.clock_out_latitude, visit_data.clock_out_longitude,
                code="CLOCK_OUT_GEOFENCE_VIOLATION", field="clockOutLocation", label="Clock-out",
            )
            if error is not None:
                errors.append(error)

        if visit_data.clock_out_time <= visit_data.clock_in_time:
            errors.append(ValidationIssue(
                code="CLOCK_OUT_BEFORE_CLOCK_IN",
                message="Clock-out time must be after clock-in time",
                field="clockOutTime",
            ))
        return errors

    def _check_late_clock_out(self, state, rules, visit_data):
        if visit_data.scheduled_end_time is None:
            return None
        late_minutes = (visit_data.clock_out_time - visit_data.scheduled_end_time).total_seconds() / 60
        if late_minutes > rules.late_clock_out_minutes:
            return ValidationIssue(
                code="LATE_CLOCK_OUT",
                message=(
                    f"Clock-out {round_half_up(late_minutes)} minutes late, exceeding "
                    f"{rules.late_clock_out_minutes}-minute grace period"
                ),
                field="clockOutTime",
                regulation=f"{state} allows {rules.late_clock_out_minutes} minutes late clock-out",
            )
        return None
