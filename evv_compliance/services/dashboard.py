# dashboard.py
from collections import Counter
from datetime import datetime

from ..conf import get_setting
from ..domain import (
    COMPLIANT_FLAG,
    AggregatorMetrics,
    ComplianceIssue,
    ComplianceMetrics,
    GeofenceMetrics,
    PayorApprovalStatus,
    StateComplianceDashboard,
)


def _as_date(value):
    return value.date() if isinstance(value, datetime) else value


def _mean(values):
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else 0.0


def is_fully_compliant(record):
    return set(record.compliance_flags) == {COMPLIANT_FLAG}


def is_partially_compliant(record):
    return COMPLIANT_FLAG in record.compliance_flags and not is_fully_compliant(record)


def compute_compliance_metrics(records):
    total = len(records)
    compliant = sum(1 for r in records if is_fully_compliant(r))
    partial = sum(1 for r in records if is_partially_compliant(r))
    non_compliant = sum(1 for r in records if COMPLIANT_FLAG not in r.compliance_flags)

    return ComplianceMetrics(
        total_visits=total,
        compliant_visits=compliant,
        partially_compliant_visits=partial,
        non_compliant_visits=non_compliant,
        compliance_rate=compliant / total if total > 0 else 0.0,
    )


def compute_geofence_metrics(records):
    checks = [r.clock_in_verification for r in records if r.clock_in_verification is not None]
    passed = sum(1 for v in checks if v.geofence_passed)

    return GeofenceMetrics(
        total_checks=len(checks),
        passed=passed,
        failed=len(checks) - passed,
        average_distance=_mean(v.distance_from_address for v in checks),
        average_accuracy=_mean(v.accuracy for v in checks),
    )


def compute_aggregator_metrics(records):
    submitted = [r for r in records if r.submitted_to_payor]

    def count(status):
        return sum(1 for r in submitted if r.payor_approval_status == status)

    # Time from clock-out to payor submission, where both are known
    submission_times = [
        (r.submitted_to_payor - r.clock_out_time).total_seconds() * 1000
        for r in submitted if r.clock_out_time is not None
    ]

    return AggregatorMetrics(
        total_submissions=len(submitted),
        successful_submissions=count(PayorApprovalStatus.APPROVED),
        failed_submissions=count(PayorApprovalStatus.DENIED),
        pending_submissions=count(PayorApprovalStatus.PENDING),
        average_submission_time_ms=_mean(submission_times),
    )


def compute_top_issues(records, limit=None):
    if limit is None:
        limit = get_setting("EVV_DASHBOARD_TOP_ISSUES")
    total = len(records)
    counts = Counter(
        flag for record in records for flag in record.compliance_flags if flag != COMPLIANT_FLAG
    )
    # most_common keeps first-seen order among equal counts
    return tuple(
        ComplianceIssue(issue_code=code, count=n, percentage=n / total * 100)
        for code, n in counts.most_common(limit)
    )


def generate_compliance_dashboard(state, start_date, end_date, records, top_issue_limit=None):
    """
    Aggregate compliance statistics for one state over an inclusive date range.

    Records from other states, or with a service date outside the range, are
    ignored. An empty selection yields zeroed metrics.
    """
    start, end = _as_date(start_date), _as_date(end_date)
    filtered = [
        r for r in records
        if r.service_address.state == state and start <= _as_date(r.service_date) <= end
    ]

    return StateComplianceDashboard(
        state=state,
        start_date=start,
        end_date=end,
        metrics=compute_compliance_metrics(filtered),
        geofence_metrics=compute_geofence_metrics(filtered),
        aggregator_metrics=compute_aggregator_metrics(filtered),
        top_issues=compute_top_issues(filtered, top_issue_limit),
    )
