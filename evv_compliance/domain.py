# domain.py
"""
Value objects passed through the compliance core.

Records coming from the integration layer are frozen so that validating the
same record twice always yields the same feedback. Feedback objects are
built fresh per call.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Mapping, Optional, Tuple

COMPLIANT_FLAG = "COMPLIANT"


class ComplianceStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    WARNING = "WARNING"
    NON_COMPLIANT = "NON_COMPLIANT"


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PayorApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    PENDING_INFO = "PENDING_INFO"
    APPEALED = "APPEALED"


class GeofencePolicy(str, Enum):
    # base radius + reported GPS accuracy (tolerance when accuracy unknown)
    ACCURACY = "ACCURACY"
    # base radius + fixed state tolerance, reported accuracy ignored
    FIXED_TOLERANCE = "FIXED_TOLERANCE"


# -----------------------
# RECORDS (read-only input)
# -----------------------
@dataclass(frozen=True)
class ServiceAddress:
    line1: str
    city: str
    state: str
    postal_code: str
    latitude: float
    longitude: float
    geofence_radius: Optional[float] = None
    line2: Optional[str] = None
    country: str = "US"
    address_verified: bool = False


@dataclass(frozen=True)
class LocationVerification:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None
    geofence_passed: bool = False
    distance_from_address: Optional[float] = None
    mock_location_detected: bool = False
    method: str = "GPS"


@dataclass(frozen=True)
class EVVRecord:
    id: str
    visit_id: str
    client_id: str
    caregiver_id: str
    service_date: date
    service_address: ServiceAddress
    clock_in_time: datetime
    clock_in_verification: LocationVerification
    service_type_code: str = ""
    service_type_name: str = ""
    client_name: str = ""
    client_medicaid_id: Optional[str] = None
    caregiver_name: str = ""
    caregiver_employee_id: str = ""
    scheduled_start_time: Optional[datetime] = None
    scheduled_end_time: Optional[datetime] = None
    clock_out_time: Optional[datetime] = None
    clock_out_verification: Optional[LocationVerification] = None
    compliance_flags: Tuple[str, ...] = (COMPLIANT_FLAG,)
    submitted_to_payor: Optional[datetime] = None
    payor_approval_status: Optional[PayorApprovalStatus] = None
    state_specific_data: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self):
        if (self.clock_out_time is None) != (self.clock_out_verification is None):
            raise ValueError(
                f"EVV record {self.id}: clock-out time and clock-out verification "
                f"must both be present or both be absent"
            )

    @property
    def has_clock_out(self):
        return self.clock_out_time is not None

    @property
    def duration_minutes(self):
        if not self.has_clock_out:
            return None
        return int((self.clock_out_time - self.clock_in_time).total_seconds() // 60)


@dataclass(frozen=True)
class VisitData:
    client_latitude: float
    client_longitude: float
    clock_in_latitude: float
    clock_in_longitude: float
    clock_in_time: datetime
    scheduled_start_time: datetime
    gps_accuracy: Optional[float] = None
    scheduled_end_time: Optional[datetime] = None
    clock_out_latitude: Optional[float] = None
    clock_out_longitude: Optional[float] = None
    clock_out_time: Optional[datetime] = None
    mock_location_detected: bool = False

    def __post_init__(self):
        clock_out_fields = (self.clock_out_latitude, self.clock_out_longitude, self.clock_out_time)
        present = [value is not None for value in clock_out_fields]
        if any(present) and not all(present):
            raise ValueError("Clock-out coordinates and time must be given together")

    @property
    def has_clock_out(self):
        return self.clock_out_time is not None


# -----------------------
# VALIDATION OUTPUT
# -----------------------
@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    field: str
    regulation: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationIssue, ...] = ()
    regulatory_context: str = ""

    @property
    def valid(self):
        return not self.errors

    def has_error(self, code):
        return any(error.code == code for error in self.errors)


@dataclass(frozen=True)
class GeofenceCheck:
    within_bounds: bool
    distance: int
    allowed_radius: float
    gps_accuracy: Optional[float] = None


@dataclass(frozen=True)
class GracePeriodCheck:
    within_grace: bool
    minutes_from_scheduled: int
    allowed_grace_minutes: int


@dataclass(frozen=True)
class AggregatorResult:
    """What a single aggregator target reports back for one record"""
    aggregator: str
    success: bool
    submission_id: Optional[str] = None
    confirmation_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    requires_retry: bool = False


@dataclass(frozen=True)
class AggregatorSubmissionStatus:
    aggregator_name: str
    success: bool
    timestamp: datetime
    submission_id: Optional[str] = None
    confirmation_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    # Transient failure (timeout, transport error); the same payload may be resent
    requires_retry: bool = False


@dataclass
class AggregatorRequirements:
    required: List[str]
    submission_status: SubmissionStatus = SubmissionStatus.PENDING
    submission_results: Optional[List[AggregatorSubmissionStatus]] = None


@dataclass
class RealTimeValidationFeedback:
    status: ComplianceStatus
    state: str
    validation: ValidationResult
    geofence: GeofenceCheck
    grace_period: GracePeriodCheck
    aggregators: AggregatorRequirements
    recommendations: List[str]
    regulatory_context: str

    @property
    def submittable(self):
        return self.status != ComplianceStatus.NON_COMPLIANT


# -----------------------
# DASHBOARD
# -----------------------
@dataclass(frozen=True)
class ComplianceMetrics:
    total_visits: int
    compliant_visits: int
    partially_compliant_visits: int
    non_compliant_visits: int
    compliance_rate: float


@dataclass(frozen=True)
class GeofenceMetrics:
    total_checks: int
    passed: int
    failed: int
    average_distance: float
    average_accuracy: float


@dataclass(frozen=True)
class AggregatorMetrics:
    total_submissions: int
    successful_submissions: int
    failed_submissions: int
    pending_submissions: int
    average_submission_time_ms: float


@dataclass(frozen=True)
class ComplianceIssue:
    issue_code: str
    count: int
    percentage: float


@dataclass(frozen=True)
class StateComplianceDashboard:
    state: str
    start_date: date
    end_date: date
    metrics: ComplianceMetrics
    geofence_metrics: GeofenceMetrics
    aggregator_metrics: AggregatorMetrics
    top_issues: Tuple[ComplianceIssue, ...]
